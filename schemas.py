"""
Storefront Database Schemas

Each Pydantic model below is the immutable value stored in one collection.
The collection name is the lowercase class name. Example: class Product -> collection "product".

Documents carry their identifier as a string ``id``; the repositories translate it to and
from the store's native key.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ShippingAddress(Frozen):
    street: str
    city: str
    state: str
    zip: str
    country: str


class Address(Frozen):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class User(Frozen):
    id: str
    email: EmailStr
    username: str
    password_hash: Optional[str] = None
    role: str = Field("user", description="user | admin")
    address: Optional[Address] = None
    is_banned: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def public(self) -> dict:
        return self.model_dump(mode="json", exclude={"password_hash"})


class Review(Frozen):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: datetime = Field(default_factory=utcnow)


class Product(Frozen):
    id: str
    name: str
    price: float = Field(..., ge=0)
    description: str = ""
    image: str = ""
    category: Optional[str] = None
    stock: int = 0
    reviews: Tuple[Review, ...] = ()
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def avg_rating(self) -> float:
        if not self.reviews:
            return 0
        return sum(r.rating for r in self.reviews) / len(self.reviews)


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Discount(Frozen):
    id: str
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0, description="Cap per unit")
    start_date: datetime
    end_date: Optional[datetime] = None
    is_active: bool = True
    applicable_products: Tuple[str, ...] = Field((), description="Empty means every product")
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("code")
    @classmethod
    def _upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("start_date", "end_date")
    @classmethod
    def _aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def is_usable(self, at: datetime) -> bool:
        return (
            self.is_active
            and self.start_date <= at
            and (self.end_date is None or self.end_date >= at)
        )


class LineItem(Frozen):
    """One cart or order line; ``price`` is the unit price."""
    product_id: str
    quantity: int = Field(..., gt=0)
    price: float = Field(..., ge=0)


class AppliedDiscount(Frozen):
    code: str
    amount: float


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Order(Frozen):
    id: str
    user_id: str
    items: Tuple[LineItem, ...]
    shipping_address: ShippingAddress
    subtotal: float
    discount: Optional[Tuple[AppliedDiscount, ...]] = None
    total: float
    payment_status: PaymentStatus = PaymentStatus.PENDING
    razorpay_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class CartItem(Frozen):
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(Frozen):
    user_id: str
    items: Tuple[CartItem, ...] = ()


class WishlistItem(Frozen):
    product_id: str
    added_at: datetime = Field(default_factory=utcnow)


class Wishlist(Frozen):
    user_id: str
    items: Tuple[WishlistItem, ...] = ()
