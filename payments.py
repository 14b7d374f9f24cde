"""
Payment gateway integration

PaymentGateway talks to the Stripe REST API to open payment intents.
PaymentConfirmationListener handles the signed webhook the gateway sends back.
It is the only code path allowed to mark an order as paid.
"""
import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import requests

from database import utcnow
from errors import PaymentGatewayError, SignatureError
from settings import Settings

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class PaymentGateway:
    def __init__(self, settings: Settings, timeout: int = 15):
        self.secret_key = settings.stripe_secret_key
        self.api_base = settings.stripe_api_base.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        if not self.configured:
            raise PaymentGatewayError("Stripe is not configured", status_code=503)
        try:
            r = requests.request(
                method,
                f"{self.api_base}{path}",
                auth=(self.secret_key, ""),
                data=data,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Stripe request %s %s failed: %s", method, path, e)
            raise PaymentGatewayError(f"Payment processing failed: {e}")
        try:
            body = r.json()
        except ValueError:
            body = {}
        if r.status_code >= 300:
            message = (body.get("error") or {}).get("message") or r.text[:200]
            logger.error("Stripe returned %s for %s %s: %s", r.status_code, method, path, message)
            raise PaymentGatewayError(f"Payment processing failed: {message}")
        return body

    def create_payment_intent(self, amount: float, currency: str = "usd", description: str = "Thrifty Steps Order") -> dict:
        """amount is already expressed in the currency's minor unit (cents)."""
        intent = self._request("POST", "/v1/payment_intents", data={
            "amount": int(round(amount)),
            "currency": currency.lower(),
            "description": description,
            "automatic_payment_methods[enabled]": "true",
        })
        return {"client_secret": intent.get("client_secret"), "payment_intent_id": intent.get("id")}


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), msg=signed, digestmod=hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, header: Optional[str], secret: Optional[str],
                     tolerance: int = 300, now: Optional[int] = None):
    """Check a "t=<unix>,v1=<hex>" signature header; raises SignatureError on any mismatch."""
    if not secret:
        raise SignatureError("Webhook secret is not configured")
    if not header:
        raise SignatureError("Missing signature header")

    timestamp = None
    candidates = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)
    if timestamp is None or not timestamp.isdigit() or not candidates:
        raise SignatureError("Malformed signature header")

    expected = compute_signature(payload, secret, int(timestamp))
    if not any(hmac.compare_digest(expected, c) for c in candidates):
        raise SignatureError("Invalid webhook signature")

    now = int(time.time()) if now is None else now
    if tolerance and abs(now - int(timestamp)) > tolerance:
        raise SignatureError("Webhook timestamp outside the tolerance zone")


class PaymentConfirmationListener:
    def __init__(self, db, settings: Settings):
        self.db = db
        self.secret = settings.stripe_webhook_secret
        self.tolerance = settings.webhook_tolerance_sec

    def handle_payment_confirmed(self, payload: bytes, signature: Optional[str], now: Optional[int] = None) -> dict:
        try:
            verify_signature(payload, signature, self.secret, self.tolerance, now)
        except SignatureError as e:
            logger.warning("Rejected webhook: %s", e.message)
            raise

        try:
            event = json.loads(payload)
        except ValueError:
            raise SignatureError("Webhook payload is not valid JSON")

        event_type = event.get("type")
        if event_type != PAYMENT_SUCCEEDED:
            logger.info("Ignoring webhook event %s", event_type)
            return {"received": True}

        intent = (event.get("data") or {}).get("object") or {}
        intent_id = intent.get("id")
        if not intent_id:
            logger.warning("Payment succeeded event %s without an intent id", event.get("id"))
            return {"received": True}

        self.mark_paid(intent_id, intent.get("amount_received", intent.get("amount")))
        return {"received": True}

    def mark_paid(self, payment_intent_id: str, amount: Optional[int]) -> bool:
        """Record a captured payment on the order carrying this intent.

        amount is what the gateway captured, in minor units. It has to match the
        order total, otherwise the order is left untouched.
        """
        order = self.db["order"].find_one({"payment_intent_id": payment_intent_id})
        if not order:
            logger.info("No order for payment %s", payment_intent_id)
            return False

        expected = to_minor_units(order["total_amount"])
        if not isinstance(amount, int) or amount != expected:
            logger.warning("Payment %s captured %s but order %s expects %s, not marking paid",
                           payment_intent_id, amount, order["_id"], expected)
            return False

        status = order["order_status"]
        flt = {"_id": order["_id"], "payment_status": {"$in": ["pending", "failed"]}, "order_status": status}
        update = {"payment_status": "paid", "updated_at": utcnow()}
        if status in ("pending", "processing"):
            update["order_status"] = "processing"

        result = self.db["order"].update_one(flt, {"$set": update})
        if result.modified_count == 0:
            logger.info("Payment %s already recorded on order %s", payment_intent_id, order["_id"])
            return False
        if status == "cancelled":
            logger.warning("Payment %s captured for cancelled order %s, refund required", payment_intent_id, order["_id"])
        else:
            logger.info("Payment %s confirmed, order %s marked paid", payment_intent_id, order["_id"])
        return True
