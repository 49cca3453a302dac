import asyncio
from datetime import timedelta

import pytest

from conftest import ADDRESS, add_discount, add_product, add_user
from errors import (
    DiscountRejected,
    InvalidSignature,
    InvalidTransition,
    NotFound,
    Unauthorized,
    UpstreamFailure,
    UpstreamTimeout,
    within_deadline,
)
from orders import OrderLifecycle, check_transition, is_terminal
from payments import payment_signature, signature_matches, to_minor_units
from pricing import DiscountEvaluator, OrderPricingEngine
from schemas import LineItem, PaymentStatus, utcnow

SECRET = "test_secret"


@pytest.fixture
def lifecycle(store, gateway, mailer):
    pricing = OrderPricingEngine(DiscountEvaluator(store.discounts, store.products))
    return OrderLifecycle(
        orders=store.orders,
        pricing=pricing,
        gateway=gateway,
        mailer=mailer,
        users=store.users,
        products=store.products,
        signing_secret=SECRET,
        currency="INR",
    )


@pytest.fixture
def buyer(store):
    return add_user(store)


@pytest.fixture
def mouse(store):
    return add_product(store, "Wireless Mouse", 100.0)


def cart(product, quantity=2):
    return [LineItem(product_id=product.id, quantity=quantity, price=product.price)]


def test_signature_is_hmac_of_order_and_payment():
    sig = payment_signature("S", "X", "Y")

    assert len(sig) == 64
    assert signature_matches("S", "X", "Y", sig)
    assert not signature_matches("S", "X", "Z", sig)
    assert not signature_matches("other", "X", "Y", sig)
    assert not signature_matches("S", "X", "Y", None)


def test_minor_units():
    assert to_minor_units(180.0) == 18000
    assert to_minor_units(19.99) == 1999
    assert to_minor_units(0) == 0


def test_transition_table():
    check_transition(PaymentStatus.PENDING, PaymentStatus.COMPLETED)
    check_transition(PaymentStatus.PENDING, PaymentStatus.FAILED)
    assert is_terminal(PaymentStatus.COMPLETED)
    assert is_terminal(PaymentStatus.FAILED)
    assert not is_terminal(PaymentStatus.PENDING)
    for current in (PaymentStatus.COMPLETED, PaymentStatus.FAILED):
        for target in PaymentStatus:
            with pytest.raises(InvalidTransition):
                check_transition(current, target)


@pytest.mark.asyncio
async def test_create_persists_pending_order_and_intent(store, lifecycle, gateway, buyer, mouse):
    add_discount(store, "CODE10")

    session = await lifecycle.create(buyer.id, cart(mouse), ADDRESS, ["CODE10"])

    order = await store.orders.find_by_id(session.order_id)
    assert order.payment_status == PaymentStatus.PENDING
    assert order.total == 180
    assert order.razorpay_order_id == session.razorpay_order_id
    assert session.amount == 18000
    assert session.currency == "INR"
    assert session.key == "rzp_test_key"
    assert gateway.calls == [(18000, "INR", f"order_{order.id}")]


@pytest.mark.asyncio
async def test_create_requires_user(store, lifecycle, mouse):
    with pytest.raises(Unauthorized):
        await lifecycle.create(None, cart(mouse), ADDRESS, [])

    assert store.orders.table.rows == {}


@pytest.mark.asyncio
async def test_rejected_code_creates_nothing(store, lifecycle, gateway, buyer, mouse):
    with pytest.raises(DiscountRejected):
        await lifecycle.create(buyer.id, cart(mouse), ADDRESS, ["NOPE"])

    assert store.orders.table.rows == {}
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_gateway_failure_propagates(store, lifecycle, gateway, buyer, mouse):
    gateway.fail = True

    with pytest.raises(UpstreamFailure):
        await lifecycle.create(buyer.id, cart(mouse), ADDRESS, [])

    [order] = store.orders.table.all()
    assert order.payment_status == PaymentStatus.PENDING
    assert order.razorpay_order_id is None


@pytest.mark.asyncio
async def test_confirm_completes_order_and_sends_email(store, lifecycle, mailer, buyer, mouse):
    session = await lifecycle.create(buyer.id, cart(mouse), ADDRESS, [])
    sig = payment_signature(SECRET, session.razorpay_order_id, "pay_1")

    order = await lifecycle.confirm(session.order_id, "pay_1", session.razorpay_order_id, sig)

    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.payment_id == "pay_1"
    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "buyer@example.com"
    assert "Wireless Mouse" in mailer.sent[0]["html"]


@pytest.mark.asyncio
async def test_repeated_confirmation_is_a_no_op(store, lifecycle, mailer, buyer, mouse):
    session = await lifecycle.create(buyer.id, cart(mouse), ADDRESS, [])
    sig = payment_signature(SECRET, session.razorpay_order_id, "pay_1")

    first = await lifecycle.confirm(session.order_id, "pay_1", session.razorpay_order_id, sig)
    second = await lifecycle.confirm(session.order_id, "pay_1", session.razorpay_order_id, sig)

    assert second == first
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_bad_signature_fails_order(store, lifecycle, mailer, buyer, mouse):
    session = await lifecycle.create(buyer.id, cart(mouse), ADDRESS, [])

    with pytest.raises(InvalidSignature):
        await lifecycle.confirm(session.order_id, "pay_1", session.razorpay_order_id, "forged")

    order = await store.orders.find_by_id(session.order_id)
    assert order.payment_status == PaymentStatus.FAILED
    assert mailer.sent == []

    good = payment_signature(SECRET, session.razorpay_order_id, "pay_1")
    with pytest.raises(InvalidSignature):
        await lifecycle.confirm(session.order_id, "pay_1", session.razorpay_order_id, good)
    assert (await store.orders.find_by_id(session.order_id)).payment_status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_signature_for_another_gateway_order_is_rejected(store, lifecycle, buyer, mouse):
    session = await lifecycle.create(buyer.id, cart(mouse), ADDRESS, [])
    sig = payment_signature(SECRET, "order_someone_else", "pay_1")

    with pytest.raises(InvalidSignature):
        await lifecycle.confirm(session.order_id, "pay_1", "order_someone_else", sig)

    assert (await store.orders.find_by_id(session.order_id)).payment_status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_confirm_unknown_order(lifecycle):
    with pytest.raises(NotFound) as exc:
        await lifecycle.confirm("64b000000000000000000000", "pay_1", "order_1", "sig")

    assert exc.value.error_code == "ORDER_NOT_FOUND"


@pytest.mark.asyncio
async def test_email_failure_does_not_fail_confirmation(store, lifecycle, mailer, buyer, mouse):
    mailer.fail = True
    session = await lifecycle.create(buyer.id, cart(mouse), ADDRESS, [])
    sig = payment_signature(SECRET, session.razorpay_order_id, "pay_1")

    order = await lifecycle.confirm(session.order_id, "pay_1", session.razorpay_order_id, sig)

    assert order.payment_status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_transition_loses_race(store, lifecycle, buyer, mouse):
    session = await lifecycle.create(buyer.id, cart(mouse), ADDRESS, [])
    stale = await store.orders.find_by_id(session.order_id)
    await lifecycle.transition(stale, PaymentStatus.COMPLETED, payment_id="pay_1")

    with pytest.raises(InvalidTransition) as exc:
        await lifecycle.transition(stale, PaymentStatus.FAILED)

    assert exc.value.message == "Order is already completed"


@pytest.mark.asyncio
async def test_list_for_user_newest_first(store, lifecycle, buyer, mouse):
    base = {"items": cart(mouse), "shipping_address": ADDRESS, "subtotal": 200, "total": 200}
    older = store.orders.table.insert({**base, "user_id": buyer.id, "created_at": utcnow() - timedelta(days=2)})
    newer = store.orders.table.insert({**base, "user_id": buyer.id, "created_at": utcnow()})
    store.orders.table.insert({**base, "user_id": "someone-else"})

    orders = await lifecycle.list_for_user(buyer.id)

    assert [o.id for o in orders] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_within_deadline_times_out():
    with pytest.raises(UpstreamTimeout) as exc:
        await within_deadline(asyncio.sleep(1), "Slow call", timeout=0.01)

    assert exc.value.status_code == 504
