from datetime import timedelta

import pytest
from bson import ObjectId

from database import utcnow
from errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStockError,
    InvalidVariantError,
    NotFoundError,
    ValidationError,
)
from orders import OrderAssembler
from schemas import OrderCreate

from conftest import ADDRESS


def checkout(*items, **extra):
    body = {"items": list(items), "shipping_address": ADDRESS}
    body.update(extra)
    return OrderCreate(**body)


def line(product, quantity=1, size="41", color="Black"):
    return {"product_id": str(product["_id"]), "quantity": quantity, "size": size, "color": color}


@pytest.fixture
def assembler(db, settings):
    return OrderAssembler(db, settings)


def stock_of(db, product):
    return db["product"].find_one({"_id": product["_id"]})["stock"]


def test_order_without_promo_adds_ten_percent_tax(assembler, user, make_product):
    product = make_product(price=500.0, stock=5)
    order = assembler.create_order(str(user["_id"]), checkout(line(product, quantity=2)))

    assert order["subtotal"] == 1000
    assert order["tax"] == 100
    assert order["shipping_cost"] == 0
    assert order["total_amount"] == 1100
    assert order["payment_status"] == "pending"
    assert order["order_status"] == "pending"
    assert order["order_number"] == f"THRIFTY-{order['id'][-8:].upper()}"


def test_order_snapshots_line_items_and_decrements_stock(db, assembler, user, make_product):
    product = make_product(stock=5)
    order = assembler.create_order(str(user["_id"]), checkout(line(product, quantity=3, color="black")))

    item = order["items"][0]
    assert item["title"] == "Air Runner"
    assert item["image"] == "https://cdn.example.com/air-runner.jpg"
    assert item["color"] == "black"
    assert item["quantity"] == 3
    assert item["price"] == 100
    assert item["product"]["brand"] == "Nike"
    assert order["user"]["name"] == "Jane"
    assert stock_of(db, product) == 2

    db["product"].update_one({"_id": product["_id"]}, {"$set": {"title": "Renamed", "price": 999}})
    stored = db["order"].find_one({"_id": ObjectId(order["id"])})
    assert stored["items"][0]["title"] == "Air Runner"
    assert stored["items"][0]["price"] == 100


def test_discount_price_is_used_when_set(assembler, user, make_product):
    product = make_product(price=100.0, discount_price=80.0)
    order = assembler.create_order(str(user["_id"]), checkout(line(product, quantity=2)))
    assert order["subtotal"] == 160
    assert order["items"][0]["price"] == 80


def test_quantity_above_stock_fails_and_leaves_stock(db, assembler, user, make_product):
    product = make_product(stock=2)
    with pytest.raises(InsufficientStockError):
        assembler.create_order(str(user["_id"]), checkout(line(product, quantity=3)))
    assert stock_of(db, product) == 2
    assert db["order"].count_documents({}) == 0


def test_failure_restores_earlier_items(db, assembler, user, make_product):
    first = make_product(title="First", stock=5)
    second = make_product(title="Second", stock=1)
    with pytest.raises(InsufficientStockError):
        assembler.create_order(str(user["_id"]), checkout(line(first, quantity=2), line(second, quantity=2)))
    assert stock_of(db, first) == 5
    assert stock_of(db, second) == 1


def test_stale_stock_read_cannot_oversell(db, assembler, user, make_product, monkeypatch):
    product = make_product(stock=1)
    stale = dict(product, stock=10)
    monkeypatch.setattr(assembler, "_load_product", lambda product_id: stale)
    with pytest.raises(InsufficientStockError):
        assembler.create_order(str(user["_id"]), checkout(line(product, quantity=3)))
    assert stock_of(db, product) == 1


def test_missing_or_inactive_product(assembler, user, make_product):
    inactive = make_product(is_active=False)
    with pytest.raises(NotFoundError):
        assembler.create_order(str(user["_id"]), checkout(line(inactive)))
    with pytest.raises(NotFoundError):
        assembler.create_order(str(user["_id"]), checkout({"product_id": str(ObjectId()), "quantity": 1,
                                                           "size": "41", "color": "Black"}))


def test_invalid_product_id(assembler, user):
    with pytest.raises(ValidationError):
        assembler.create_order(str(user["_id"]), checkout({"product_id": "abc", "quantity": 1,
                                                           "size": "41", "color": "Black"}))


def test_invalid_size_or_color(db, assembler, user, make_product):
    product = make_product(stock=4)
    with pytest.raises(InvalidVariantError):
        assembler.create_order(str(user["_id"]), checkout(line(product, size="47")))
    with pytest.raises(InvalidVariantError):
        assembler.create_order(str(user["_id"]), checkout(line(product, color="Purple")))
    assert stock_of(db, product) == 4


def test_promo_is_applied_and_usage_recorded(db, assembler, user, make_product, make_promo):
    product = make_product(price=500.0)
    promo = make_promo(code="SAVE10")
    order = assembler.create_order(str(user["_id"]), checkout(line(product, quantity=2), promo_code="save10"))

    assert order["promo_code"] == "SAVE10"
    assert order["promo_code_discount"] == 100
    assert order["tax"] == 90
    assert order["total_amount"] == 990
    assert db["promocode"].find_one({"_id": promo["_id"]})["used_count"] == 1


def test_unusable_promo_is_ignored(db, assembler, user, make_product, make_promo):
    now = utcnow()
    product = make_product(price=100.0)
    expired = make_promo(code="OLD", valid_from=now - timedelta(days=9), valid_until=now - timedelta(days=2))
    order = assembler.create_order(str(user["_id"]), checkout(line(product), promo_code="OLD"))
    assert order["promo_code"] is None
    assert order["promo_code_discount"] == 0
    assert order["total_amount"] == 110
    assert db["promocode"].find_one({"_id": expired["_id"]})["used_count"] == 0


def test_promo_minimum_not_met_is_ignored(db, assembler, user, make_product, make_promo):
    product = make_product(price=100.0)
    promo = make_promo(code="BIG", min_purchase_amount=500)
    order = assembler.create_order(str(user["_id"]), checkout(line(product), promo_code="BIG"))
    assert order["promo_code_discount"] == 0
    assert db["promocode"].find_one({"_id": promo["_id"]})["used_count"] == 0


def test_unknown_promo_is_ignored(assembler, user, make_product):
    product = make_product(price=100.0)
    order = assembler.create_order(str(user["_id"]), checkout(line(product), promo_code="GHOST"))
    assert order["promo_code"] is None
    assert order["total_amount"] == 110


def test_total_matches_persisted_parts(db, assembler, user, make_product, make_promo):
    a = make_product(title="A", price=19.99, stock=10)
    b = make_product(title="B", price=5.55, discount_price=4.45, stock=10)
    make_promo(code="FLAT7", discount_type="fixed", discount_value=7)
    order = assembler.create_order(str(user["_id"]), checkout(line(a, quantity=3), line(b, quantity=2),
                                                              promo_code="FLAT7"))
    stored = db["order"].find_one({"_id": ObjectId(order["id"])})
    line_total = sum(i["price"] * i["quantity"] for i in stored["items"])
    assert stored["subtotal"] == pytest.approx(line_total)
    assert stored["total_amount"] == pytest.approx(
        stored["subtotal"] - stored["promo_code_discount"] + stored["shipping_cost"] + stored["tax"]
    )


def test_client_cannot_create_paid_order(assembler, user, make_product):
    product = make_product()
    request = checkout(line(product), payment_status="paid", order_status="delivered", total_amount=0)
    order = assembler.create_order(str(user["_id"]), request)
    assert order["payment_status"] == "pending"
    assert order["order_status"] == "pending"
    assert order["total_amount"] == 110


def test_cart_is_cleared(db, assembler, make_user, make_product):
    product = make_product()
    shopper = make_user(cart=[{"item_id": "c1", "product_id": str(product["_id"]), "quantity": 1,
                               "size": "41", "color": "Black"}])
    assembler.create_order(str(shopper["_id"]), checkout(line(product)))
    assert db["user"].find_one({"_id": shopper["_id"]})["cart"] == []


def test_status_update_rejects_paid(assembler, user, make_product):
    order = assembler.create_order(str(user["_id"]), checkout(line(make_product())))
    with pytest.raises(ValidationError):
        assembler.update_status(order["id"], payment_status="paid")
    updated = assembler.update_status(order["id"], order_status="shipped", payment_status="failed")
    assert updated["order_status"] == "shipped"
    assert updated["payment_status"] == "failed"


def test_status_update_needs_a_change(assembler, user, make_product):
    order = assembler.create_order(str(user["_id"]), checkout(line(make_product())))
    with pytest.raises(ValidationError):
        assembler.update_status(order["id"])


def test_cancel_restores_stock(db, assembler, user, make_product):
    product = make_product(stock=5)
    order = assembler.create_order(str(user["_id"]), checkout(line(product, quantity=2)))
    assert stock_of(db, product) == 3

    cancelled = assembler.cancel_order(order["id"], user)
    assert cancelled["order_status"] == "cancelled"
    assert stock_of(db, product) == 5

    with pytest.raises(ValidationError):
        assembler.cancel_order(order["id"], user)
    assert stock_of(db, product) == 5


def test_cannot_cancel_shipped_order(assembler, user, make_product):
    order = assembler.create_order(str(user["_id"]), checkout(line(make_product())))
    assembler.update_status(order["id"], order_status="shipped")
    with pytest.raises(ValidationError):
        assembler.cancel_order(order["id"], user)


def test_other_users_cannot_see_or_cancel(assembler, user, make_user, admin, make_product):
    order = assembler.create_order(str(user["_id"]), checkout(line(make_product())))
    stranger = make_user(name="Eve")
    with pytest.raises(AuthorizationError):
        assembler.get_for_user(order["id"], stranger)
    with pytest.raises(AuthorizationError):
        assembler.cancel_order(order["id"], stranger)
    assert assembler.get_for_user(order["id"], admin)["id"] == order["id"]


def test_list_for_user_is_paginated(assembler, user, make_user, make_product):
    product = make_product(stock=20)
    for _ in range(3):
        assembler.create_order(str(user["_id"]), checkout(line(product)))
    assembler.create_order(str(make_user()["_id"]), checkout(line(product)))

    page = assembler.list_for_user(str(user["_id"]), page=1, limit=2)
    assert len(page["orders"]) == 2
    assert page["pagination"]["total"] == 3
    assert page["pagination"]["total_pages"] == 2
    assert assembler.list_all()["pagination"]["total"] == 4


def test_payment_intent_cannot_be_shared(db, assembler, user, make_user, make_product):
    product = make_product(price=1.0, stock=5)
    first = assembler.create_order(str(user["_id"]), checkout(line(product), payment_intent_id="pi_X"))
    assert first["payment_intent_id"] == "pi_X"

    with pytest.raises(ConflictError):
        assembler.create_order(str(make_user()["_id"]), checkout(line(product, quantity=4), payment_intent_id="pi_X"))
    assert db["order"].count_documents({"payment_intent_id": "pi_X"}) == 1
    assert stock_of(db, product) == 4


def test_orders_without_intent_do_not_collide(db, assembler, user, make_product):
    product = make_product(stock=5)
    a = assembler.create_order(str(user["_id"]), checkout(line(product)))
    b = assembler.create_order(str(user["_id"]), checkout(line(product), payment_intent_id=""))
    assert a["payment_intent_id"] is None
    assert b["payment_intent_id"] is None
    assert "payment_intent_id" not in db["order"].find_one({"_id": ObjectId(a["id"])})
