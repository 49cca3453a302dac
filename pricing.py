"""
Discount evaluation and order pricing.

DiscountEvaluator checks one code against a cart and prices the products it covers from
the catalog. OrderPricingEngine runs an ordered list of codes over a cart; the first code
to discount a product claims it, later codes skip that product. Both are pure with
respect to their inputs, the repositories they read and the clock.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from config import CURRENCY_SYMBOL
from errors import DiscountRejected, InvalidInput
from repositories import DiscountLookup, ProductLookup
from schemas import (
    AppliedDiscount,
    Discount,
    DiscountType,
    Frozen,
    LineItem,
    ShippingAddress,
    utcnow,
)

logger = logging.getLogger("storefront.pricing")

REQUIRED_SHIPPING_FIELDS = ("street", "city", "state", "zip", "country")


class RejectionReason(str, Enum):
    INVALID_OR_EXPIRED = "invalid_or_expired"
    NOT_APPLICABLE = "not_applicable"
    MIN_ORDER_NOT_MET = "min_order_not_met"
    INVALID_PRODUCTS = "invalid_products"


class DiscountedItem(Frozen):
    product_id: str
    discounted_price: float


class DiscountOutcome(Frozen):
    code: str
    discount_type: DiscountType
    discount_value: float
    max_discount_amount: Optional[float] = None
    discounted_items: Tuple[DiscountedItem, ...]
    # single-code mode only
    discount_amount: Optional[float] = None
    new_subtotal: Optional[float] = None


class PricedOrder(Frozen):
    items: Tuple[LineItem, ...]
    shipping_address: ShippingAddress
    subtotal: float
    discount: Optional[Tuple[AppliedDiscount, ...]] = None
    total: float


def money(amount: float) -> float:
    return round(amount, 2)


def subtotal_of(items: Iterable[LineItem]) -> float:
    return money(sum(item.price * item.quantity for item in items))


def discount_per_unit(discount: Discount, catalog_price: float) -> float:
    if discount.discount_type == DiscountType.PERCENTAGE:
        amount = catalog_price * (discount.discount_value / 100)
    else:
        amount = discount.discount_value
    if discount.max_discount_amount is not None and amount > discount.max_discount_amount:
        amount = discount.max_discount_amount
    return amount


def discounted_unit_price(discount: Discount, catalog_price: float) -> float:
    return money(max(catalog_price - discount_per_unit(discount, catalog_price), 0))


def validate_cart(items: Optional[Sequence[LineItem]]) -> Tuple[LineItem, ...]:
    if not items:
        raise InvalidInput("Items array is required and cannot be empty", "INVALID_ITEMS")
    return tuple(items)


def validate_shipping_address(address: Optional[Mapping]) -> ShippingAddress:
    if not isinstance(address, Mapping):
        raise InvalidInput("Shipping address is required and must be an object", "INVALID_SHIPPING_ADDRESS")
    missing = [f for f in REQUIRED_SHIPPING_FIELDS if not str(address.get(f) or "").strip()]
    if missing:
        raise InvalidInput(
            f"Missing shipping address fields: {', '.join(missing)}",
            "MISSING_SHIPPING_FIELDS",
            errors=[{"field": f, "message": "required"} for f in missing],
        )
    return ShippingAddress(**{f: str(address[f]).strip() for f in REQUIRED_SHIPPING_FIELDS})


class DiscountEvaluator:
    def __init__(self, discounts: DiscountLookup, products: ProductLookup,
                 clock: Callable[[], datetime] = utcnow):
        self.discounts = discounts
        self.products = products
        self.clock = clock

    async def evaluate(self, code: str, cart_product_ids: Iterable[str], subtotal: float,
                       cart_items: Sequence[LineItem], include_totals: bool = False) -> DiscountOutcome:
        """
        Price the cart products covered by ``code``.

        Raises DiscountRejected when the code is unknown or outside its window, covers no
        cart product, the subtotal is under its minimum, or a covered product is missing
        from the catalog. With ``include_totals`` the outcome also carries the discount
        amount over the cart quantities and the resulting subtotal.
        """
        normalized = (code or "").strip().upper()
        discount = await self.discounts.find_usable(normalized, self.clock()) if normalized else None
        if discount is None:
            raise self._reject(code, RejectionReason.INVALID_OR_EXPIRED, "Invalid or expired discount code.")

        cart_ids = list(dict.fromkeys(cart_product_ids))
        if discount.applicable_products:
            allowed = set(discount.applicable_products)
            applicable = [pid for pid in cart_ids if pid in allowed]
        else:
            applicable = cart_ids
        if not applicable:
            raise self._reject(code, RejectionReason.NOT_APPLICABLE,
                               "Discount does not apply to any items in your cart.")

        if discount.min_order_value and subtotal < discount.min_order_value:
            raise self._reject(
                code, RejectionReason.MIN_ORDER_NOT_MET,
                f"Minimum order value of {CURRENCY_SYMBOL}{discount.min_order_value:,.2f} required for this discount.",
            )

        products = {p.id: p for p in await self.products.find_by_ids(applicable)}
        if len(products) != len(applicable):
            raise self._reject(code, RejectionReason.INVALID_PRODUCTS, "Some applicable product IDs are invalid.")

        discounted = tuple(
            DiscountedItem(product_id=pid, discounted_price=discounted_unit_price(discount, products[pid].price))
            for pid in applicable
        )
        logger.debug("discount %s covers %d product(s)", discount.code, len(discounted))

        extra: Dict[str, float] = {}
        if include_totals:
            catalog = {pid: p.price for pid, p in products.items()}
            prices = {d.product_id: d.discounted_price for d in discounted}
            amount = money(sum(
                (catalog[item.product_id] - prices[item.product_id]) * item.quantity
                for item in cart_items
                if item.product_id in prices
            ))
            extra = {"discount_amount": amount, "new_subtotal": money(subtotal - amount)}

        return DiscountOutcome(
            code=discount.code,
            discount_type=discount.discount_type,
            discount_value=discount.discount_value,
            max_discount_amount=discount.max_discount_amount,
            discounted_items=discounted,
            **extra,
        )

    @staticmethod
    def _reject(code: str, reason: RejectionReason, message: str) -> DiscountRejected:
        logger.info("discount %r rejected: %s", code, reason.value)
        return DiscountRejected(code, reason.value, message)


class OrderPricingEngine:
    def __init__(self, evaluator: DiscountEvaluator):
        self.evaluator = evaluator

    async def price(self, cart_items: Optional[Sequence[LineItem]], discount_codes: Optional[Sequence[str]],
                    shipping_address: Optional[Mapping]) -> PricedOrder:
        items = validate_cart(cart_items)
        address = validate_shipping_address(shipping_address)

        subtotal = subtotal_of(items)
        product_ids = [item.product_id for item in items]
        claimed: set = set()
        applied: List[AppliedDiscount] = []
        discount_amount = 0.0
        working = list(items)

        for code in discount_codes or ():
            outcome = await self.evaluator.evaluate(code, product_ids, subtotal, items)
            prices = {
                d.product_id: d.discounted_price
                for d in outcome.discounted_items
                if d.product_id not in claimed
            }
            if not prices:
                continue

            contribution = money(sum(
                (item.price - prices[item.product_id]) * item.quantity
                for item in items
                if item.product_id in prices
            ))
            discount_amount += contribution
            if contribution:
                applied.append(AppliedDiscount(code=outcome.code, amount=contribution))

            claimed.update(prices)
            working = [
                w.model_copy(update={"price": prices[w.product_id]}) if w.product_id in prices else w
                for w in working
            ]

        return PricedOrder(
            items=tuple(working),
            shipping_address=address,
            subtotal=subtotal,
            discount=tuple(applied) or None,
            total=money(subtotal - discount_amount),
        )
