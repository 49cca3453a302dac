"""
Repository interfaces and their MongoDB implementation.

The pricing core only depends on ProductLookup / DiscountLookup and the order lifecycle
on OrderStore / UserLookup; the wider repositories add the CRUD used by the HTTP layer.
memory.py implements the same interfaces without a database.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase

from database import create_document, from_document, get_documents, object_id, object_ids, to_document
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


class ProductLookup(Protocol):
    async def find_by_ids(self, ids: Iterable[str]) -> List[Product]: ...


class DiscountLookup(Protocol):
    async def find_usable(self, code: str, now: datetime) -> Optional[Discount]: ...


class UserLookup(Protocol):
    async def get(self, user_id: str) -> Optional[User]: ...


class OrderStore(Protocol):
    async def create(self, data: Dict[str, Any]) -> Order: ...

    async def find_by_id(self, order_id: str) -> Optional[Order]: ...

    async def update_status(self, order_id: str, status: PaymentStatus, expected: PaymentStatus,
                            payment_id: Optional[str] = None) -> Optional[Order]: ...

    async def set_gateway_order(self, order_id: str, razorpay_order_id: str) -> Optional[Order]: ...

    async def list_by_user(self, user_id: str) -> List[Order]: ...


def month_label(year: int, month: int) -> str:
    return f"{month}/{year}"


# MongoDB

class MongoUsers:
    def __init__(self, db: AsyncDatabase):
        self._db = db
        self._col = db["user"]

    async def get(self, user_id: str) -> Optional[User]:
        oid = object_id(user_id)
        if oid is None:
            return None
        return from_document(User, await self._col.find_one({"_id": oid}))

    async def find_by_email(self, email: str) -> Optional[User]:
        return from_document(User, await self._col.find_one({"email": email}))

    async def find_by_username(self, username: str) -> Optional[User]:
        return from_document(User, await self._col.find_one({"username": username}))

    async def create(self, data: Dict[str, Any]) -> User:
        user_id = await create_document(self._db, "user", data)
        return await self.get(user_id)

    async def update(self, user_id: str, changes: Dict[str, Any]) -> Optional[User]:
        oid = object_id(user_id)
        if oid is None:
            return None
        doc = await self._col.find_one_and_update(
            {"_id": oid},
            {"$set": to_document(changes) | {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(User, doc)

    async def delete(self, user_id: str) -> bool:
        oid = object_id(user_id)
        if oid is None:
            return False
        res = await self._col.delete_one({"_id": oid})
        return res.deleted_count == 1

    async def list_all(self) -> List[User]:
        docs = await self._col.find({}).sort("created_at", DESCENDING).to_list(length=None)
        return [from_document(User, d) for d in docs]


class MongoProducts:
    def __init__(self, db: AsyncDatabase):
        self._db = db
        self._col = db["product"]

    async def get(self, product_id: str) -> Optional[Product]:
        oid = object_id(product_id)
        if oid is None:
            return None
        return from_document(Product, await self._col.find_one({"_id": oid}))

    async def find_by_ids(self, ids: Iterable[str]) -> List[Product]:
        docs = await get_documents(self._db, "product", {"_id": {"$in": object_ids(ids)}})
        return [from_document(Product, d) for d in docs]

    async def list_active(self) -> List[Product]:
        docs = await get_documents(self._db, "product", {"is_deleted": False})
        return [from_document(Product, d) for d in docs]

    async def search(self, q: str) -> List[Product]:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        query = {"is_deleted": False, "$or": [{"name": pattern}, {"description": pattern}, {"category": pattern}]}
        docs = await get_documents(self._db, "product", query)
        return [from_document(Product, d) for d in docs]

    async def page(self, page: int, limit: int) -> Tuple[List[Product], int]:
        total = await self._col.count_documents({})
        cursor = self._col.find({}).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        return [from_document(Product, d) for d in await cursor.to_list(length=None)], total

    async def categories(self) -> List[str]:
        return [c for c in await self._col.distinct("category") if c]

    async def count(self) -> int:
        return await self._col.count_documents({})

    async def create(self, data: Dict[str, Any]) -> Product:
        product_id = await create_document(self._db, "product", data)
        return await self.get(product_id)

    async def update(self, product_id: str, changes: Dict[str, Any]) -> Optional[Product]:
        oid = object_id(product_id)
        if oid is None:
            return None
        doc = await self._col.find_one_and_update(
            {"_id": oid},
            {"$set": to_document(changes) | {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(Product, doc)

    async def bulk_update(self, ids: Iterable[str], changes: Dict[str, Any]) -> int:
        res = await self._col.update_many(
            {"_id": {"$in": object_ids(ids)}},
            {"$set": to_document(changes) | {"updated_at": utcnow()}},
        )
        return res.modified_count

    async def delete(self, product_id: str) -> bool:
        oid = object_id(product_id)
        if oid is None:
            return False
        res = await self._col.delete_one({"_id": oid})
        return res.deleted_count == 1

    async def add_review(self, product_id: str, review: Review) -> Optional[Product]:
        oid = object_id(product_id)
        if oid is None:
            return None
        doc = await self._col.find_one_and_update(
            {"_id": oid},
            {"$push": {"reviews": to_document(review)}},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(Product, doc)


def _usable_filter(now: datetime) -> Dict[str, Any]:
    return {
        "is_active": True,
        "start_date": {"$lte": now},
        "$or": [{"end_date": {"$gte": now}}, {"end_date": None}],
    }


class MongoDiscounts:
    def __init__(self, db: AsyncDatabase):
        self._db = db
        self._col = db["discount"]

    async def get(self, discount_id: str) -> Optional[Discount]:
        oid = object_id(discount_id)
        if oid is None:
            return None
        return from_document(Discount, await self._col.find_one({"_id": oid}))

    async def find_by_code(self, code: str) -> Optional[Discount]:
        return from_document(Discount, await self._col.find_one({"code": code.strip().upper()}))

    async def find_usable(self, code: str, now: datetime) -> Optional[Discount]:
        query = {"code": code.strip().upper()} | _usable_filter(now)
        return from_document(Discount, await self._col.find_one(query))

    async def list_usable(self, now: datetime) -> List[Discount]:
        docs = await get_documents(self._db, "discount", _usable_filter(now))
        return [from_document(Discount, d) for d in docs]

    async def list_all(self) -> List[Discount]:
        docs = await self._col.find({}).sort("created_at", DESCENDING).to_list(length=None)
        return [from_document(Discount, d) for d in docs]

    async def create(self, data: Dict[str, Any]) -> Discount:
        discount_id = await create_document(self._db, "discount", data)
        return await self.get(discount_id)

    async def update(self, discount_id: str, changes: Dict[str, Any]) -> Optional[Discount]:
        oid = object_id(discount_id)
        if oid is None:
            return None
        doc = await self._col.find_one_and_update(
            {"_id": oid},
            {"$set": to_document(changes) | {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(Discount, doc)

    async def bulk_update(self, ids: Iterable[str], changes: Dict[str, Any]) -> int:
        res = await self._col.update_many(
            {"_id": {"$in": object_ids(ids)}},
            {"$set": to_document(changes) | {"updated_at": utcnow()}},
        )
        return res.modified_count

    async def delete(self, discount_id: str) -> bool:
        oid = object_id(discount_id)
        if oid is None:
            return False
        res = await self._col.delete_one({"_id": oid})
        return res.deleted_count == 1


class MongoOrders:
    def __init__(self, db: AsyncDatabase):
        self._db = db
        self._col = db["order"]

    async def create(self, data: Dict[str, Any]) -> Order:
        order_id = await create_document(self._db, "order", data)
        return await self.find_by_id(order_id)

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        oid = object_id(order_id)
        if oid is None:
            return None
        return from_document(Order, await self._col.find_one({"_id": oid}))

    async def update_status(self, order_id: str, status: PaymentStatus, expected: PaymentStatus,
                            payment_id: Optional[str] = None) -> Optional[Order]:
        """Compare-and-set on payment_status; None when the order is gone or already moved."""
        oid = object_id(order_id)
        if oid is None:
            return None
        changes: Dict[str, Any] = {"payment_status": status.value, "updated_at": utcnow()}
        if payment_id is not None:
            changes["payment_id"] = payment_id
        doc = await self._col.find_one_and_update(
            {"_id": oid, "payment_status": expected.value},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(Order, doc)

    async def set_gateway_order(self, order_id: str, razorpay_order_id: str) -> Optional[Order]:
        oid = object_id(order_id)
        if oid is None:
            return None
        doc = await self._col.find_one_and_update(
            {"_id": oid},
            {"$set": {"razorpay_order_id": razorpay_order_id, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(Order, doc)

    async def list_by_user(self, user_id: str) -> List[Order]:
        docs = await self._col.find({"user_id": user_id}).sort("created_at", DESCENDING).to_list(length=None)
        return [from_document(Order, d) for d in docs]

    async def page(self, page: int, limit: int) -> Tuple[List[Order], int]:
        total = await self._col.count_documents({})
        cursor = self._col.find({}).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        return [from_document(Order, d) for d in await cursor.to_list(length=None)], total

    async def delete(self, order_id: str) -> bool:
        oid = object_id(order_id)
        if oid is None:
            return False
        res = await self._col.delete_one({"_id": oid})
        return res.deleted_count == 1


class MongoCarts:
    def __init__(self, db: AsyncDatabase):
        self._col = db["cart"]

    async def get(self, user_id: str) -> Optional[Cart]:
        doc = await self._col.find_one({"user_id": user_id}, {"_id": 0})
        return Cart.model_validate(doc) if doc else None

    async def save(self, cart: Cart) -> Cart:
        await self._col.replace_one({"user_id": cart.user_id}, to_document(cart), upsert=True)
        return cart


class MongoWishlists:
    def __init__(self, db: AsyncDatabase):
        self._col = db["wishlist"]

    async def get(self, user_id: str) -> Optional[Wishlist]:
        doc = await self._col.find_one({"user_id": user_id}, {"_id": 0})
        return Wishlist.model_validate(doc) if doc else None

    async def save(self, wishlist: Wishlist) -> Wishlist:
        await self._col.replace_one({"user_id": wishlist.user_id}, to_document(wishlist), upsert=True)
        return wishlist


class MongoDashboard:
    """Read-only aggregates for the admin dashboard."""

    def __init__(self, db: AsyncDatabase):
        self._db = db

    async def _aggregate(self, collection: str, pipeline: List[dict]) -> List[dict]:
        cursor = await self._db[collection].aggregate(pipeline)
        return await cursor.to_list(length=None)

    async def summary(self) -> Dict[str, Any]:
        completed = {"$match": {"payment_status": PaymentStatus.COMPLETED.value}}
        users = await self._db["user"].count_documents({"role": "user"})
        orders = await self._db["order"].count_documents({})
        products = await self._db["product"].count_documents({})
        revenue = await self._aggregate("order", [
            completed,
            {"$group": {"_id": None, "total": {"$sum": "$total"}}},
        ])
        recent = await self._db["order"].find({}).sort("created_at", DESCENDING).limit(5).to_list(length=None)
        top = await self._aggregate("order", [
            completed,
            {"$unwind": "$items"},
            {"$group": {
                "_id": "$items.product_id",
                "total_sold": {"$sum": "$items.quantity"},
                "total_revenue": {"$sum": {"$multiply": ["$items.quantity", "$items.price"]}},
            }},
            {"$sort": {"total_sold": -1}},
            {"$limit": 5},
        ])
        names = {
            str(p["_id"]): p.get("name")
            for p in await self._db["product"].find(
                {"_id": {"$in": object_ids(row["_id"] for row in top)}}, {"name": 1}
            ).to_list(length=None)
        }
        by_month = {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}}
        newest_first = [{"$sort": {"_id.year": -1, "_id.month": -1}}, {"$limit": 6}]
        growth = await self._aggregate("user", [
            {"$match": {"role": "user"}},
            {"$group": {"_id": by_month, "count": {"$sum": 1}}},
            *newest_first,
        ])
        trend = await self._aggregate("order", [
            completed,
            {"$group": {"_id": by_month, "total": {"$sum": "$total"}}},
            *newest_first,
        ])
        return {
            "users": users,
            "orders": orders,
            "revenue": revenue[0]["total"] if revenue else 0,
            "products": products,
            "recent_orders": [from_document(Order, d) for d in recent],
            "top_products": [
                {
                    "product_id": row["_id"],
                    "name": names[row["_id"]],
                    "total_sold": row["total_sold"],
                    "total_revenue": round(row["total_revenue"], 2),
                }
                for row in top
                if row["_id"] in names
            ],
            "user_growth": [
                {"month": month_label(r["_id"]["year"], r["_id"]["month"]), "count": r["count"]}
                for r in reversed(growth)
            ],
            "revenue_trend": [
                {"month": month_label(r["_id"]["year"], r["_id"]["month"]), "total": round(r["total"], 2)}
                for r in reversed(trend)
            ],
        }


@dataclass
class Store:
    users: Any
    products: Any
    discounts: Any
    orders: Any
    carts: Any
    wishlists: Any
    dashboard: Any


def mongo_store(db: AsyncDatabase) -> Store:
    return Store(
        users=MongoUsers(db),
        products=MongoProducts(db),
        discounts=MongoDiscounts(db),
        orders=MongoOrders(db),
        carts=MongoCarts(db),
        wishlists=MongoWishlists(db),
        dashboard=MongoDashboard(db),
    )
