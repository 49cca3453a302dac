"""Razorpay payment gateway and callback signature checks."""
import asyncio
import hashlib
import hmac
import logging
from typing import Optional, Protocol

from config import RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET, UPSTREAM_TIMEOUT_SECONDS
from errors import UpstreamFailure, UpstreamTimeout, within_deadline
from schemas import Frozen

logger = logging.getLogger("storefront.payments")


class PaymentIntent(Frozen):
    id: str
    amount: int
    currency: str


class PaymentGateway(Protocol):
    key_id: str

    async def create_intent(self, amount_minor_units: int, currency: str, receipt: str) -> PaymentIntent: ...


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def payment_signature(secret: str, order_ref: str, payment_id: str) -> str:
    body = f"{order_ref}|{payment_id}"
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def signature_matches(secret: str, order_ref: str, payment_id: str, signature: Optional[str]) -> bool:
    expected = payment_signature(secret, order_ref, payment_id)
    return hmac.compare_digest(expected.encode(), (signature or "").encode())


class RazorpayGateway:
    def __init__(self, key_id: str = RAZORPAY_KEY_ID, key_secret: str = RAZORPAY_KEY_SECRET,
                 timeout: float = UPSTREAM_TIMEOUT_SECONDS):
        import razorpay

        self.key_id = key_id
        self.timeout = timeout
        self.client = razorpay.Client(auth=(key_id, key_secret))

    async def create_intent(self, amount_minor_units: int, currency: str, receipt: str) -> PaymentIntent:
        if amount_minor_units < 0:
            raise ValueError("amount must be non-negative")
        payload = {"amount": amount_minor_units, "currency": currency, "receipt": receipt}
        try:
            order = await within_deadline(
                asyncio.to_thread(self.client.order.create, data=payload),
                "Payment gateway",
                self.timeout,
            )
        except UpstreamTimeout:
            logger.error("razorpay order create timed out (receipt=%s)", receipt)
            raise
        except Exception as exc:
            logger.exception("razorpay order create failed (receipt=%s)", receipt)
            raise UpstreamFailure("Payment gateway request failed", "PAYMENT_GATEWAY_ERROR") from exc
        return PaymentIntent(id=order["id"], amount=order.get("amount", amount_minor_units),
                             currency=order.get("currency", currency))
