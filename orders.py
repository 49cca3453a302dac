"""
Order lifecycle: checkout creates a pending order and a gateway payment intent, the
payment callback moves it to completed or failed.

    pending ──► completed
       └──────► failed

completed and failed are terminal; every status change goes through ``transition`` so no
other path can move an order.
"""
import logging
from typing import Dict, FrozenSet, Mapping, Optional, Sequence

from config import PRIMARY_CURRENCY, RAZORPAY_KEY_SECRET
from errors import InvalidSignature, InvalidTransition, NotFound, Unauthorized, within_deadline
from notifications import Mailer, render_order_confirmation
from payments import PaymentGateway, signature_matches, to_minor_units
from pricing import OrderPricingEngine
from repositories import OrderStore, ProductLookup, UserLookup
from schemas import Frozen, LineItem, Order, PaymentStatus, utcnow

logger = logging.getLogger("storefront.orders")

TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


def is_terminal(status: PaymentStatus) -> bool:
    return not TRANSITIONS[status]


def check_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move order from {current.value} to {target.value}")


class CheckoutSession(Frozen):
    order_id: str
    razorpay_order_id: str
    amount: int
    currency: str
    key: str


class OrderLifecycle:
    def __init__(self, orders: OrderStore, pricing: OrderPricingEngine, gateway: PaymentGateway,
                 mailer: Mailer, users: UserLookup, products: ProductLookup,
                 signing_secret: str = RAZORPAY_KEY_SECRET, currency: str = PRIMARY_CURRENCY):
        self.orders = orders
        self.pricing = pricing
        self.gateway = gateway
        self.mailer = mailer
        self.users = users
        self.products = products
        self.signing_secret = signing_secret
        self.currency = currency

    async def transition(self, order: Order, target: PaymentStatus, payment_id: Optional[str] = None) -> Order:
        check_transition(order.payment_status, target)
        updated = await within_deadline(
            self.orders.update_status(order.id, target, expected=order.payment_status, payment_id=payment_id),
            "Order update",
        )
        if updated is not None:
            return updated
        current = await within_deadline(self.orders.find_by_id(order.id), "Order lookup")
        if current is None:
            raise NotFound("Order not found", "ORDER_NOT_FOUND")
        raise InvalidTransition(f"Order is already {current.payment_status.value}")

    async def create(self, user_id: Optional[str], items: Sequence[LineItem],
                     shipping_address: Optional[Mapping], discount_codes: Optional[Sequence[str]]) -> CheckoutSession:
        if not user_id:
            raise Unauthorized("Unauthorized: User not found")

        priced = await within_deadline(self.pricing.price(items, discount_codes, shipping_address), "Order pricing")
        order = await within_deadline(self.orders.create({
            "user_id": user_id,
            "items": priced.items,
            "shipping_address": priced.shipping_address,
            "subtotal": priced.subtotal,
            "discount": priced.discount,
            "total": priced.total,
            "payment_status": PaymentStatus.PENDING,
            "created_at": utcnow(),
        }), "Order save")

        amount = to_minor_units(order.total)
        intent = await self.gateway.create_intent(amount, self.currency, f"order_{order.id}")
        await within_deadline(self.orders.set_gateway_order(order.id, intent.id), "Order update")
        logger.info("order %s pending: total=%s razorpay_order=%s", order.id, order.total, intent.id)

        return CheckoutSession(
            order_id=order.id,
            razorpay_order_id=intent.id,
            amount=amount,
            currency=self.currency,
            key=self.gateway.key_id,
        )

    async def confirm(self, order_id: str, payment_id: str, gateway_order_id: str, signature: str) -> Order:
        order = await within_deadline(self.orders.find_by_id(order_id), "Order lookup")
        if order is None:
            raise NotFound("Order not found", "ORDER_NOT_FOUND")

        # Replayed callbacks get the stored outcome.
        if order.payment_status == PaymentStatus.COMPLETED:
            logger.info("order %s already completed; ignoring repeated confirmation", order.id)
            return order
        if order.payment_status == PaymentStatus.FAILED:
            raise InvalidSignature()

        reference_ok = order.razorpay_order_id is None or order.razorpay_order_id == gateway_order_id
        if not (reference_ok and signature_matches(self.signing_secret, gateway_order_id, payment_id, signature)):
            logger.warning("payment signature mismatch for order %s (payment %s)", order.id, payment_id)
            try:
                await self.transition(order, PaymentStatus.FAILED)
            except NotFound:
                raise
            except Exception:
                logger.exception("could not mark order %s as failed", order.id)
            raise InvalidSignature()

        try:
            completed = await self.transition(order, PaymentStatus.COMPLETED, payment_id=payment_id)
        except InvalidTransition:
            current = await within_deadline(self.orders.find_by_id(order.id), "Order lookup")
            if current is not None and current.payment_status == PaymentStatus.COMPLETED:
                return current
            raise
        logger.info("order %s completed with payment %s", completed.id, payment_id)

        await self._send_confirmation(completed)
        return completed

    async def list_for_user(self, user_id: Optional[str]) -> Sequence[Order]:
        if not user_id:
            raise Unauthorized("Unauthorized: User not found")
        return await within_deadline(self.orders.list_by_user(user_id), "Order lookup")

    async def _send_confirmation(self, order: Order) -> None:
        try:
            user = await within_deadline(self.users.get(order.user_id), "User lookup")
            if user is None:
                logger.warning("order %s has no user %s; confirmation email skipped", order.id, order.user_id)
                return
            products = await within_deadline(
                self.products.find_by_ids({i.product_id for i in order.items}), "Product lookup"
            )
            html = render_order_confirmation(order, {p.id: p.name for p in products})
            await within_deadline(self.mailer.send(user.email, "Order Confirmation", html), "Confirmation email")
        except Exception:
            logger.exception("confirmation email for order %s failed", order.id)
