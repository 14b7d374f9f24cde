import logging
import math
from typing import List, Optional

from bson import ObjectId
from pymongo import DESCENDING

from database import create_document, serialize_doc, to_object_id, utcnow
from errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStockError,
    InvalidVariantError,
    NotFoundError,
    ValidationError,
)
from promo import compute_discount, find_promo, is_redeemable, record_usage, round_money
from schemas import Order, OrderCreate, ORDER_STATUSES, PAYMENT_STATUSES
from settings import Settings

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = ("pending", "processing")


def order_number(order_id) -> str:
    return f"THRIFTY-{str(order_id)[-8:].upper()}"


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "total": total,
        "limit": limit,
    }


class OrderAssembler:
    """Turns a checkout request into a persisted, pending order.

    Stock is reserved one item at a time with a conditional decrement, so a
    concurrent order can never drive stock below zero. If any item fails, the
    reservations already made for this request are handed back before the
    error propagates.
    """

    def __init__(self, db, settings: Settings):
        self.db = db
        self.settings = settings

    def create_order(self, user_id: str, request: OrderCreate) -> dict:
        if request.payment_intent_id and self.db["order"].find_one({"payment_intent_id": request.payment_intent_id}):
            raise ConflictError("Payment intent is already attached to another order")

        reserved = []
        items = []
        subtotal = 0.0
        try:
            for item in request.items:
                product = self._load_product(item.product_id)
                if product["stock"] < item.quantity:
                    raise InsufficientStockError(f"Insufficient stock for {product['title']}")
                self._check_variant(product, item.size, item.color)

                unit_price = product.get("discount_price")
                if unit_price is None:
                    unit_price = product["price"]
                subtotal += unit_price * item.quantity

                items.append({
                    "product_id": str(product["_id"]),
                    "title": product["title"],
                    "image": product["images"][0],
                    "size": item.size,
                    "color": item.color,
                    "quantity": item.quantity,
                    "price": unit_price,
                })

                self._reserve(product, item.quantity)
                reserved.append((product["_id"], item.quantity))
        except Exception:
            self._restock(reserved)
            raise

        subtotal = round_money(subtotal)
        discount = 0.0
        promo = None
        if request.promo_code:
            candidate = find_promo(self.db, request.promo_code)
            if candidate and is_redeemable(candidate) and subtotal >= candidate.get("min_purchase_amount", 0):
                promo = candidate
                discount = compute_discount(promo, subtotal)

        shipping_cost = self.settings.shipping_cost
        tax = round_money((subtotal - discount) * self.settings.tax_rate)
        total_amount = round_money(subtotal - discount + shipping_cost + tax)

        try:
            doc = Order(
                user_id=user_id,
                items=items,
                shipping_address=request.shipping_address,
                payment_method=request.payment_method,
                payment_intent_id=request.payment_intent_id,
                payment_status="pending",
                order_status="pending",
                subtotal=subtotal,
                total_amount=total_amount,
                shipping_cost=shipping_cost,
                tax=tax,
                promo_code=promo["code"] if promo else None,
                promo_code_discount=discount,
            ).model_dump()
            # left out rather than null so the sparse unique index skips it
            if not doc["payment_intent_id"]:
                del doc["payment_intent_id"]
            order_id = create_document(self.db, "order", doc)
        except Exception:
            self._restock(reserved)
            raise

        if promo:
            record_usage(self.db, promo)
            logger.info("Promo %s applied to order %s (-%.2f)", promo["code"], order_id, discount)

        self.db["user"].update_one({"_id": ObjectId(user_id)}, {"$set": {"cart": []}})
        logger.info("Order %s created for user %s, total %.2f", order_id, user_id, total_amount)

        order = self.db["order"].find_one({"_id": ObjectId(order_id)})
        return self.populate(order)

    def _load_product(self, product_id: str) -> dict:
        oid = to_object_id(product_id, "product ID")
        product = self.db["product"].find_one({"_id": oid})
        if not product or not product.get("is_active", True):
            raise NotFoundError(f"Product {product_id} not found or inactive")
        return product

    @staticmethod
    def _check_variant(product: dict, size: str, color: str):
        if size not in [str(s) for s in product.get("sizes", [])]:
            raise InvalidVariantError(f"Size {size} not available for {product['title']}")
        if not any(c.lower() == color.lower() for c in product.get("colors", [])):
            raise InvalidVariantError(f"Color {color} not available for {product['title']}")

    def _reserve(self, product: dict, quantity: int):
        result = self.db["product"].update_one(
            {"_id": product["_id"], "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        )
        if result.modified_count == 0:
            raise InsufficientStockError(f"Insufficient stock for {product['title']}")

    def _restock(self, reserved: List[tuple]):
        for product_id, quantity in reserved:
            self.db["product"].update_one({"_id": product_id}, {"$inc": {"stock": quantity}})
            logger.warning("Restored %d units of product %s", quantity, product_id)

    def populate(self, order: dict) -> dict:
        out = serialize_doc(order)
        out["order_number"] = order_number(out["id"])
        out.setdefault("payment_intent_id", None)

        user = None
        if ObjectId.is_valid(order.get("user_id", "")):
            user = self.db["user"].find_one({"_id": ObjectId(order["user_id"])}, {"name": 1, "email": 1})
        out["user"] = {"id": order["user_id"], "name": user.get("name"), "email": user.get("email")} if user else None

        ids = [ObjectId(i["product_id"]) for i in order.get("items", []) if ObjectId.is_valid(i["product_id"])]
        products = {
            str(p["_id"]): p
            for p in self.db["product"].find({"_id": {"$in": ids}}, {"title": 1, "brand": 1, "images": 1})
        }
        populated = []
        for item in order.get("items", []):
            item = dict(item)
            p = products.get(item["product_id"])
            item["product"] = {"id": item["product_id"], "title": p.get("title"), "brand": p.get("brand")} if p else None
            populated.append(item)
        out["items"] = populated
        return out

    def _get(self, order_id: str) -> dict:
        order = self.db["order"].find_one({"_id": to_object_id(order_id, "order ID")})
        if not order:
            raise NotFoundError("Order not found")
        return order

    def get_for_user(self, order_id: str, user: dict) -> dict:
        order = self._get(order_id)
        if order["user_id"] != str(user["_id"]) and not user.get("is_admin"):
            raise AuthorizationError("Not authorized to access this order")
        return self.populate(order)

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 10) -> dict:
        flt = {"user_id": user_id}
        cursor = self.db["order"].find(flt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        total = self.db["order"].count_documents(flt)
        return {"orders": [self.populate(o) for o in cursor], "pagination": pagination(page, limit, total)}

    def list_all(self, page: int = 1, limit: int = 20, order_status: Optional[str] = None,
                 payment_status: Optional[str] = None, user_id: Optional[str] = None) -> dict:
        flt = {}
        if order_status:
            flt["order_status"] = order_status
        if payment_status:
            flt["payment_status"] = payment_status
        if user_id and ObjectId.is_valid(user_id):
            flt["user_id"] = user_id
        cursor = self.db["order"].find(flt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        total = self.db["order"].count_documents(flt)
        return {"orders": [self.populate(o) for o in cursor], "pagination": pagination(page, limit, total)}

    def update_status(self, order_id: str, order_status: Optional[str] = None,
                      payment_status: Optional[str] = None) -> dict:
        update = {}
        if order_status:
            if order_status not in ORDER_STATUSES:
                raise ValidationError("Invalid order status")
            update["order_status"] = order_status
        if payment_status:
            if payment_status not in PAYMENT_STATUSES:
                raise ValidationError("Invalid payment status")
            if payment_status == "paid":
                raise ValidationError("Payment status can only be set to paid by the payment provider")
            update["payment_status"] = payment_status
        if not update:
            raise ValidationError("Nothing to update")

        order = self._get(order_id)
        update["updated_at"] = utcnow()
        self.db["order"].update_one({"_id": order["_id"]}, {"$set": update})
        logger.info("Order %s status updated: %s", order_id, {k: v for k, v in update.items() if k != "updated_at"})
        return self.populate(self.db["order"].find_one({"_id": order["_id"]}))

    def cancel_order(self, order_id: str, user: dict) -> dict:
        order = self._get(order_id)
        if order["user_id"] != str(user["_id"]) and not user.get("is_admin"):
            raise AuthorizationError("Not authorized to cancel this order")

        result = self.db["order"].update_one(
            {"_id": order["_id"], "order_status": {"$in": list(CANCELLABLE_STATUSES)}},
            {"$set": {"order_status": "cancelled", "updated_at": utcnow()}},
        )
        if result.modified_count == 0:
            raise ValidationError(f"Order cannot be cancelled once {order['order_status']}")

        self._restock([(ObjectId(i["product_id"]), i["quantity"]) for i in order["items"]])
        logger.info("Order %s cancelled by user %s", order_id, user["_id"])
        return self.populate(self.db["order"].find_one({"_id": order["_id"]}))
