from datetime import timedelta

import pytest

from database import utcnow
from errors import NotFoundError, ValidationError
from promo import compute_discount, is_redeemable, preview_discount, record_usage, round_money


def promo_doc(**overrides):
    now = utcnow()
    doc = {
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": 10,
        "min_purchase_amount": 0,
        "max_discount_amount": None,
        "valid_from": now - timedelta(days=1),
        "valid_until": now + timedelta(days=1),
        "usage_limit": None,
        "used_count": 0,
        "is_active": True,
    }
    doc.update(overrides)
    return doc


def test_save10_takes_ten_percent():
    promo = promo_doc()
    discount = compute_discount(promo, 1000)
    assert discount == 100
    assert 1000 - discount == 900


def test_fixed_discount_clamped_to_cap():
    promo = promo_doc(code="FLAT50CAP30", discount_type="fixed", discount_value=50, max_discount_amount=30)
    discount = compute_discount(promo, 40)
    assert discount == 30
    assert 40 - discount == 10


def test_fixed_discount_never_exceeds_subtotal():
    promo = promo_doc(discount_type="fixed", discount_value=50)
    assert compute_discount(promo, 20) == 20


def test_below_minimum_purchase_gives_nothing():
    promo = promo_doc(min_purchase_amount=500)
    assert compute_discount(promo, 499.99) == 0
    assert compute_discount(promo, 500) == 50


def test_usage_limit_reached_is_never_redeemable():
    promo = promo_doc(usage_limit=5, used_count=5)
    assert not is_redeemable(promo)
    assert not is_redeemable(promo_doc(usage_limit=5, used_count=7, valid_until=utcnow() + timedelta(days=365)))
    assert compute_discount(promo, 1000) == 0


def test_outside_window_is_never_redeemable():
    now = utcnow()
    expired = promo_doc(valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1))
    upcoming = promo_doc(valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=10))
    assert not is_redeemable(expired)
    assert not is_redeemable(upcoming)
    assert not is_redeemable(promo_doc(valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1),
                                       usage_limit=100, used_count=0))


def test_window_bounds_are_inclusive():
    now = utcnow()
    promo = promo_doc(valid_from=now, valid_until=now + timedelta(hours=1))
    assert is_redeemable(promo, now)
    assert is_redeemable(promo, now + timedelta(hours=1))
    assert not is_redeemable(promo, now + timedelta(hours=1, seconds=1))


def test_inactive_promo_is_not_redeemable():
    assert not is_redeemable(promo_doc(is_active=False))


def test_discount_stays_within_bounds():
    promos = [
        promo_doc(discount_type="percentage", discount_value=100),
        promo_doc(discount_type="percentage", discount_value=35, max_discount_amount=12.5),
        promo_doc(discount_type="fixed", discount_value=75),
        promo_doc(discount_type="fixed", discount_value=75, max_discount_amount=20),
    ]
    for promo in promos:
        for subtotal in (0, 0.01, 9.99, 20, 74.5, 1000):
            discount = compute_discount(promo, subtotal)
            assert 0 <= discount <= subtotal
            if promo["max_discount_amount"] is not None:
                assert discount <= promo["max_discount_amount"]


def test_round_money_is_half_up():
    assert round_money(2.675) == 2.68
    assert round_money(0.125) == 0.13
    assert round_money(0.124) == 0.12
    assert compute_discount(promo_doc(discount_value=12.5), 0.1) == 0.01


def test_preview_does_not_touch_usage(db, make_promo):
    promo = make_promo(code="SAVE10")
    result = preview_discount(db, "save10", 250)
    assert result["discount"] == 25
    assert result["final_amount"] == 225
    assert result["promo_code"]["code"] == "SAVE10"
    assert db["promocode"].find_one({"_id": promo["_id"]})["used_count"] == 0


def test_preview_unknown_code(db):
    with pytest.raises(NotFoundError):
        preview_discount(db, "NOPE", 100)


def test_preview_expired_code(db, make_promo):
    now = utcnow()
    make_promo(code="OLD", valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=5))
    with pytest.raises(ValidationError):
        preview_discount(db, "old", 100)


def test_record_usage_increments_once(db, make_promo):
    promo = make_promo()
    assert record_usage(db, promo)
    assert db["promocode"].find_one({"_id": promo["_id"]})["used_count"] == 1


def test_record_usage_respects_limit(db, make_promo):
    promo = make_promo(usage_limit=1, used_count=0)
    assert record_usage(db, promo)
    assert not record_usage(db, promo)
    assert db["promocode"].find_one({"_id": promo["_id"]})["used_count"] == 1


def test_zero_cap_is_a_real_cap():
    promo = promo_doc(discount_value=20, max_discount_amount=0)
    assert compute_discount(promo, 100) == 0
    assert compute_discount(promo_doc(discount_value=20, max_discount_amount=None), 100) == 20
