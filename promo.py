"""
Promo code engine

is_redeemable and compute_discount are pure: they look only at the promo
document and the numbers passed in. record_usage is the single write, and the
order flow calls it once the order has been stored.
"""
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from database import utcnow, as_utc
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def round_money(value) -> float:
    """Round to cents, half-up."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def is_redeemable(promo: dict, now: Optional[datetime] = None) -> bool:
    if not promo or not promo.get("is_active", False):
        return False
    now = as_utc(now or utcnow())
    valid_from = promo.get("valid_from")
    valid_until = promo.get("valid_until")
    if valid_from is None or valid_until is None:
        return False
    if not (as_utc(valid_from) <= now <= as_utc(valid_until)):
        return False
    usage_limit = promo.get("usage_limit")
    if usage_limit is not None and promo.get("used_count", 0) >= usage_limit:
        return False
    return True


def compute_discount(promo: dict, subtotal: float, now: Optional[datetime] = None) -> float:
    if not is_redeemable(promo, now):
        return 0.0
    if subtotal < promo.get("min_purchase_amount", 0):
        return 0.0

    value = promo.get("discount_value", 0)
    if promo.get("discount_type") == "percentage":
        discount = subtotal * value / 100
    else:
        discount = value

    cap = promo.get("max_discount_amount")
    if cap is not None and discount > cap:
        discount = cap
    if discount > subtotal:
        discount = subtotal
    return round_money(discount)


def find_promo(db, code: str) -> Optional[dict]:
    if not code or not code.strip():
        return None
    return db["promocode"].find_one({"code": code.strip().upper()})


def record_usage(db, promo: dict) -> bool:
    """Count one redemption. Returns False if the usage limit was hit in the meantime."""
    flt = {"_id": promo["_id"]}
    if promo.get("usage_limit") is not None:
        flt["used_count"] = {"$lt": promo["usage_limit"]}
    result = db["promocode"].update_one(flt, {"$inc": {"used_count": 1}, "$set": {"updated_at": utcnow()}})
    if result.modified_count == 0:
        logger.warning("Promo %s reached its usage limit before usage could be recorded", promo.get("code"))
        return False
    return True


def promo_summary(promo: dict) -> dict:
    return {
        "id": str(promo["_id"]),
        "code": promo["code"],
        "description": promo.get("description"),
        "discount_type": promo["discount_type"],
        "discount_value": promo["discount_value"],
        "min_purchase_amount": promo.get("min_purchase_amount", 0),
        "max_discount_amount": promo.get("max_discount_amount"),
    }


def preview_discount(db, code: str, subtotal: float, now: Optional[datetime] = None) -> dict:
    """Price a code against a subtotal without touching its usage count."""
    promo = find_promo(db, code)
    if not promo:
        raise NotFoundError("Invalid promo code")
    if not is_redeemable(promo, now):
        raise ValidationError("Promo code is expired or invalid")
    discount = compute_discount(promo, subtotal, now)
    return {
        "promo_code": promo_summary(promo),
        "discount": discount,
        "subtotal": subtotal,
        "final_amount": round_money(subtotal - discount),
    }
