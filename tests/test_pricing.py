from datetime import timedelta

import pytest

from conftest import ADDRESS, add_discount, add_product
from errors import DiscountRejected, InvalidInput
from pricing import DiscountEvaluator, OrderPricingEngine, discounted_unit_price, validate_shipping_address
from schemas import Discount, LineItem, utcnow


def line(product, quantity=1, price=None):
    return LineItem(product_id=product.id, quantity=quantity, price=product.price if price is None else price)


@pytest.fixture
def evaluator(store):
    return DiscountEvaluator(store.discounts, store.products)


@pytest.fixture
def engine(evaluator):
    return OrderPricingEngine(evaluator)


@pytest.fixture
def mouse(store):
    return add_product(store, "Wireless Mouse", 100.0)


@pytest.fixture
def hoodie(store):
    return add_product(store, "Cotton Hoodie", 50.0)


def make_discount(**kwargs):
    data = {
        "id": "d1",
        "code": "x",
        "discount_type": "percentage",
        "discount_value": 10,
        "start_date": utcnow(),
    }
    data.update(kwargs)
    return Discount(**data)


def test_discounted_unit_price_never_negative():
    fixed = make_discount(discount_type="fixed", discount_value=150)
    assert discounted_unit_price(fixed, 100.0) == 0


def test_percentage_discount_respects_cap():
    capped = make_discount(discount_value=50, max_discount_amount=20)
    for price in (10.0, 40.0, 100.0, 999.99):
        assert price - discounted_unit_price(capped, price) <= 20 + 1e-9


def test_code_is_stored_upper_case():
    assert make_discount(code="  welcome10 ").code == "WELCOME10"


@pytest.mark.asyncio
async def test_no_codes_total_equals_subtotal(engine, mouse, hoodie):
    priced = await engine.price([line(mouse, 2), line(hoodie, 1)], [], ADDRESS)

    assert priced.subtotal == 250
    assert priced.total == 250
    assert priced.discount is None


@pytest.mark.asyncio
async def test_percentage_code(store, engine, mouse):
    add_discount(store, "CODE10", value=10)

    priced = await engine.price([line(mouse, 2)], ["CODE10"], ADDRESS)

    assert priced.subtotal == 200
    assert priced.total == 180
    assert [(d.code, d.amount) for d in priced.discount] == [("CODE10", 20)]
    assert priced.items[0].price == 90


@pytest.mark.asyncio
async def test_percentage_code_with_cap(store, engine, mouse):
    add_discount(store, "CODE10", value=10, max_discount_amount=5)

    priced = await engine.price([line(mouse, 2)], ["CODE10"], ADDRESS)

    assert priced.total == 190
    assert priced.discount[0].amount == 10


@pytest.mark.asyncio
async def test_codes_are_case_insensitive_and_recorded_upper_case(store, engine, mouse):
    add_discount(store, "CODE10")

    priced = await engine.price([line(mouse, 2)], ["code10"], ADDRESS)

    assert priced.discount[0].code == "CODE10"


@pytest.mark.asyncio
async def test_duplicate_code_applies_once(store, engine, mouse):
    add_discount(store, "CODE10")

    once = await engine.price([line(mouse, 2)], ["CODE10"], ADDRESS)
    twice = await engine.price([line(mouse, 2)], ["CODE10", "code10"], ADDRESS)

    assert twice.total == once.total == 180
    assert len(twice.discount) == 1


@pytest.mark.asyncio
async def test_disjoint_codes_both_apply(store, engine, mouse, hoodie):
    add_discount(store, "MOUSE10", value=10, applicable_products=[mouse.id])
    add_discount(store, "HOODIE5", discount_type="fixed", value=5, applicable_products=[hoodie.id])

    priced = await engine.price([line(mouse, 2), line(hoodie, 1)], ["MOUSE10", "HOODIE5"], ADDRESS)

    assert priced.total == 225
    assert [(d.code, d.amount) for d in priced.discount] == [("MOUSE10", 20), ("HOODIE5", 5)]


@pytest.mark.asyncio
async def test_first_code_claims_a_product(store, engine, mouse, hoodie):
    add_discount(store, "ALL10", value=10)
    add_discount(store, "MOUSE50", value=50, applicable_products=[mouse.id])

    priced = await engine.price([line(mouse, 1), line(hoodie, 1)], ["ALL10", "MOUSE50"], ADDRESS)

    assert priced.total == 135
    assert [d.code for d in priced.discount] == ["ALL10"]


@pytest.mark.asyncio
async def test_fixed_discount_larger_than_price(store, engine, mouse):
    add_discount(store, "FREE", discount_type="fixed", value=150)

    priced = await engine.price([line(mouse, 1)], ["FREE"], ADDRESS)

    assert priced.items[0].price == 0
    assert priced.total == 0


@pytest.mark.asyncio
async def test_unknown_code_aborts_checkout(store, engine, mouse):
    add_discount(store, "CODE10")

    with pytest.raises(DiscountRejected) as exc:
        await engine.price([line(mouse, 1)], ["CODE10", "NOPE"], ADDRESS)

    assert exc.value.reason == "invalid_or_expired"
    assert exc.value.message == "Invalid or expired discount code."
    assert exc.value.code == "NOPE"


@pytest.mark.asyncio
@pytest.mark.parametrize("window", [
    {"start_date": utcnow() + timedelta(days=1)},
    {"start_date": utcnow() - timedelta(days=10), "end_date": utcnow() - timedelta(days=1)},
    {"is_active": False},
])
async def test_code_outside_window_is_rejected(store, evaluator, mouse, window):
    add_discount(store, "WINDOW", **window)

    with pytest.raises(DiscountRejected) as exc:
        await evaluator.evaluate("WINDOW", [mouse.id], 100, [line(mouse)])

    assert exc.value.reason == "invalid_or_expired"


@pytest.mark.asyncio
async def test_code_not_applicable_to_cart(store, evaluator, mouse, hoodie):
    add_discount(store, "HOODIE", applicable_products=[hoodie.id])

    with pytest.raises(DiscountRejected) as exc:
        await evaluator.evaluate("HOODIE", [mouse.id], 100, [line(mouse)])

    assert exc.value.reason == "not_applicable"
    assert exc.value.message == "Discount does not apply to any items in your cart."


@pytest.mark.asyncio
async def test_minimum_order_value(store, evaluator, mouse):
    add_discount(store, "BIG", min_order_value=500)

    with pytest.raises(DiscountRejected) as exc:
        await evaluator.evaluate("BIG", [mouse.id], 200, [line(mouse, 2)])

    assert exc.value.reason == "min_order_not_met"
    assert "500" in exc.value.message
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_unknown_product_in_cart(store, evaluator, mouse):
    add_discount(store, "ALL10")
    ghost = LineItem(product_id="64b000000000000000000000", quantity=1, price=10)

    with pytest.raises(DiscountRejected) as exc:
        await evaluator.evaluate("ALL10", [mouse.id, ghost.product_id], 110, [line(mouse), ghost])

    assert exc.value.reason == "invalid_products"


@pytest.mark.asyncio
async def test_allow_list_entries_outside_cart_are_ignored(store, evaluator, mouse, hoodie):
    add_discount(store, "SOME", applicable_products=[mouse.id, hoodie.id, "64b000000000000000000000"])

    outcome = await evaluator.evaluate("SOME", [mouse.id], 100, [line(mouse)])

    assert [d.product_id for d in outcome.discounted_items] == [mouse.id]
    assert outcome.discounted_items[0].discounted_price == 90


@pytest.mark.asyncio
async def test_single_code_totals(store, evaluator, mouse, hoodie):
    add_discount(store, "CODE10")
    items = [line(mouse, 2), line(hoodie, 1)]

    outcome = await evaluator.evaluate("code10", [mouse.id, hoodie.id], 250, items, include_totals=True)

    assert outcome.code == "CODE10"
    assert outcome.discount_amount == 25
    assert outcome.new_subtotal == 225


@pytest.mark.asyncio
async def test_totals_left_out_by_default(store, evaluator, mouse):
    add_discount(store, "CODE10")

    outcome = await evaluator.evaluate("CODE10", [mouse.id], 100, [line(mouse)])

    assert outcome.discount_amount is None
    assert outcome.new_subtotal is None


@pytest.mark.asyncio
async def test_empty_cart_rejected(engine):
    with pytest.raises(InvalidInput) as exc:
        await engine.price([], [], ADDRESS)

    assert exc.value.error_code == "INVALID_ITEMS"


def test_missing_shipping_fields_are_listed():
    with pytest.raises(InvalidInput) as exc:
        validate_shipping_address({"street": "12 MG Road", "city": "Bengaluru", "state": "KA", "zip": " "})

    assert exc.value.message == "Missing shipping address fields: zip, country"
    assert exc.value.error_code == "MISSING_SHIPPING_FIELDS"


def test_shipping_address_must_be_an_object():
    with pytest.raises(InvalidInput) as exc:
        validate_shipping_address("12 MG Road")

    assert exc.value.error_code == "INVALID_SHIPPING_ADDRESS"


@pytest.mark.asyncio
async def test_minimum_order_message_shows_full_amount(store, evaluator, mouse):
    add_discount(store, "WHOLESALE", min_order_value=1234567.5)

    with pytest.raises(DiscountRejected) as exc:
        await evaluator.evaluate("WHOLESALE", [mouse.id], 100, [line(mouse)])

    assert "1,234,567.50" in exc.value.message
    assert "e+" not in exc.value.message
