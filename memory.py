"""In-memory back-end with the same interfaces as the MongoDB repositories."""
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from bson import ObjectId
from pydantic import BaseModel

from repositories import Store, month_label
from schemas import (
    Cart,
    Discount,
    Order,
    PaymentStatus,
    Product,
    Review,
    User,
    Wishlist,
    utcnow,
)

M = TypeVar("M", bound=BaseModel)


class _Table:
    """Documents of one model keyed by string id, kept in insertion order."""

    def __init__(self, model: Type[M]):
        self.model = model
        self.rows: Dict[str, M] = {}

    def insert(self, data: Dict[str, Any]) -> M:
        row = self.model.model_validate({"id": str(ObjectId()), "created_at": utcnow(), **data})
        self.rows[row.id] = row
        return row

    def get(self, row_id: str) -> Optional[M]:
        return self.rows.get(row_id)

    def update(self, row_id: str, changes: Dict[str, Any]) -> Optional[M]:
        row = self.rows.get(row_id)
        if row is None:
            return None
        row = self.model.model_validate(row.model_dump() | changes)
        self.rows[row_id] = row
        return row

    def delete(self, row_id: str) -> bool:
        return self.rows.pop(row_id, None) is not None

    def all(self) -> List[M]:
        return list(self.rows.values())

    def newest_first(self) -> List[M]:
        return sorted(self.rows.values(), key=lambda r: r.created_at, reverse=True)

    def page(self, page: int, limit: int) -> Tuple[List[M], int]:
        start = (page - 1) * limit
        return self.newest_first()[start:start + limit], len(self.rows)


class MemoryUsers:
    def __init__(self):
        self.table = _Table(User)

    async def get(self, user_id: str) -> Optional[User]:
        return self.table.get(user_id)

    async def find_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.table.all() if u.email == email), None)

    async def find_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.table.all() if u.username == username), None)

    async def create(self, data: Dict[str, Any]) -> User:
        return self.table.insert(data)

    async def update(self, user_id: str, changes: Dict[str, Any]) -> Optional[User]:
        return self.table.update(user_id, changes)

    async def delete(self, user_id: str) -> bool:
        return self.table.delete(user_id)

    async def list_all(self) -> List[User]:
        return self.table.newest_first()


class MemoryProducts:
    def __init__(self):
        self.table = _Table(Product)

    async def get(self, product_id: str) -> Optional[Product]:
        return self.table.get(product_id)

    async def find_by_ids(self, ids: Iterable[str]) -> List[Product]:
        wanted = set(ids)
        return [p for p in self.table.all() if p.id in wanted]

    async def list_active(self) -> List[Product]:
        return [p for p in self.table.all() if not p.is_deleted]

    async def search(self, q: str) -> List[Product]:
        needle = q.lower()
        return [
            p for p in await self.list_active()
            if needle in p.name.lower() or needle in p.description.lower() or needle in (p.category or "").lower()
        ]

    async def page(self, page: int, limit: int) -> Tuple[List[Product], int]:
        return self.table.page(page, limit)

    async def categories(self) -> List[str]:
        return sorted({p.category for p in self.table.all() if p.category})

    async def count(self) -> int:
        return len(self.table.rows)

    async def create(self, data: Dict[str, Any]) -> Product:
        return self.table.insert(data)

    async def update(self, product_id: str, changes: Dict[str, Any]) -> Optional[Product]:
        return self.table.update(product_id, changes)

    async def bulk_update(self, ids: Iterable[str], changes: Dict[str, Any]) -> int:
        return sum(1 for i in set(ids) if self.table.update(i, changes) is not None)

    async def delete(self, product_id: str) -> bool:
        return self.table.delete(product_id)

    async def add_review(self, product_id: str, review: Review) -> Optional[Product]:
        product = self.table.get(product_id)
        if product is None:
            return None
        return self.table.update(product_id, {"reviews": product.reviews + (review,)})


class MemoryDiscounts:
    def __init__(self):
        self.table = _Table(Discount)

    async def get(self, discount_id: str) -> Optional[Discount]:
        return self.table.get(discount_id)

    async def find_by_code(self, code: str) -> Optional[Discount]:
        code = code.strip().upper()
        return next((d for d in self.table.all() if d.code == code), None)

    async def find_usable(self, code: str, now: datetime) -> Optional[Discount]:
        discount = await self.find_by_code(code)
        if discount is not None and discount.is_usable(now):
            return discount
        return None

    async def list_usable(self, now: datetime) -> List[Discount]:
        return [d for d in self.table.all() if d.is_usable(now)]

    async def list_all(self) -> List[Discount]:
        return self.table.newest_first()

    async def create(self, data: Dict[str, Any]) -> Discount:
        return self.table.insert(data)

    async def update(self, discount_id: str, changes: Dict[str, Any]) -> Optional[Discount]:
        return self.table.update(discount_id, changes)

    async def bulk_update(self, ids: Iterable[str], changes: Dict[str, Any]) -> int:
        return sum(1 for i in set(ids) if self.table.update(i, changes) is not None)

    async def delete(self, discount_id: str) -> bool:
        return self.table.delete(discount_id)


class MemoryOrders:
    def __init__(self):
        self.table = _Table(Order)

    async def create(self, data: Dict[str, Any]) -> Order:
        return self.table.insert(data)

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        return self.table.get(order_id)

    async def update_status(self, order_id: str, status: PaymentStatus, expected: PaymentStatus,
                            payment_id: Optional[str] = None) -> Optional[Order]:
        order = self.table.get(order_id)
        if order is None or order.payment_status != expected:
            return None
        changes: Dict[str, Any] = {"payment_status": status}
        if payment_id is not None:
            changes["payment_id"] = payment_id
        return self.table.update(order_id, changes)

    async def set_gateway_order(self, order_id: str, razorpay_order_id: str) -> Optional[Order]:
        return self.table.update(order_id, {"razorpay_order_id": razorpay_order_id})

    async def list_by_user(self, user_id: str) -> List[Order]:
        return [o for o in self.table.newest_first() if o.user_id == user_id]

    async def page(self, page: int, limit: int) -> Tuple[List[Order], int]:
        return self.table.page(page, limit)

    async def delete(self, order_id: str) -> bool:
        return self.table.delete(order_id)


class MemoryCarts:
    def __init__(self):
        self.rows: Dict[str, Cart] = {}

    async def get(self, user_id: str) -> Optional[Cart]:
        return self.rows.get(user_id)

    async def save(self, cart: Cart) -> Cart:
        self.rows[cart.user_id] = cart
        return cart


class MemoryWishlists:
    def __init__(self):
        self.rows: Dict[str, Wishlist] = {}

    async def get(self, user_id: str) -> Optional[Wishlist]:
        return self.rows.get(user_id)

    async def save(self, wishlist: Wishlist) -> Wishlist:
        self.rows[wishlist.user_id] = wishlist
        return wishlist


class MemoryDashboard:
    def __init__(self, users: MemoryUsers, products: MemoryProducts, orders: MemoryOrders):
        self._users = users
        self._products = products
        self._orders = orders

    async def summary(self) -> Dict[str, Any]:
        orders = self._orders.table.newest_first()
        completed = [o for o in orders if o.payment_status == PaymentStatus.COMPLETED]

        sold: Dict[str, Dict[str, float]] = defaultdict(lambda: {"total_sold": 0, "total_revenue": 0.0})
        for order in completed:
            for item in order.items:
                sold[item.product_id]["total_sold"] += item.quantity
                sold[item.product_id]["total_revenue"] += item.quantity * item.price
        top = sorted(sold.items(), key=lambda kv: kv[1]["total_sold"], reverse=True)[:5]

        growth: Dict[Tuple[int, int], int] = defaultdict(int)
        for user in self._users.table.all():
            if user.role == "user":
                growth[(user.created_at.year, user.created_at.month)] += 1
        trend: Dict[Tuple[int, int], float] = defaultdict(float)
        for order in completed:
            trend[(order.created_at.year, order.created_at.month)] += order.total

        return {
            "users": sum(1 for u in self._users.table.all() if u.role == "user"),
            "orders": len(orders),
            "revenue": sum(o.total for o in completed),
            "products": len(self._products.table.rows),
            "recent_orders": orders[:5],
            "top_products": [
                {
                    "product_id": product_id,
                    "name": self._products.table.get(product_id).name,
                    "total_sold": stats["total_sold"],
                    "total_revenue": round(stats["total_revenue"], 2),
                }
                for product_id, stats in top
                if self._products.table.get(product_id) is not None
            ],
            "user_growth": [
                {"month": month_label(*key), "count": growth[key]} for key in sorted(growth)[-6:]
            ],
            "revenue_trend": [
                {"month": month_label(*key), "total": round(trend[key], 2)} for key in sorted(trend)[-6:]
            ],
        }


def memory_store() -> Store:
    users, products, orders = MemoryUsers(), MemoryProducts(), MemoryOrders()
    return Store(
        users=users,
        products=products,
        discounts=MemoryDiscounts(),
        orders=orders,
        carts=MemoryCarts(),
        wishlists=MemoryWishlists(),
        dashboard=MemoryDashboard(users, products, orders),
    )
