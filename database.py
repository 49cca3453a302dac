"""
MongoDB connection and document helpers.

Collections are named after the lowercase schema class (see schemas.py). Documents are
stored with an ObjectId ``_id`` and exposed to the rest of the app as string ids.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from config import DATABASE_NAME, DATABASE_URL, UPSTREAM_TIMEOUT_SECONDS

M = TypeVar("M", bound=BaseModel)


def connect(url: Optional[str] = DATABASE_URL, name: str = DATABASE_NAME) -> AsyncDatabase:
    client = AsyncMongoClient(
        url,
        tz_aware=True,
        timeoutMS=int(UPSTREAM_TIMEOUT_SECONDS * 1000),
    )
    return client[name]


async def ensure_indexes(db: AsyncDatabase) -> None:
    await db["user"].create_index("email", unique=True)
    await db["user"].create_index("username", unique=True)
    await db["discount"].create_index("code", unique=True)
    await db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await db["cart"].create_index("user_id", unique=True)
    await db["wishlist"].create_index("user_id", unique=True)


def object_id(value: str) -> Optional[ObjectId]:
    """Parse a string id; malformed ids resolve to None so lookups simply miss."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def object_ids(values) -> List[ObjectId]:
    return [oid for oid in (object_id(v) for v in values) if oid is not None]


def to_document(data: Any) -> Any:
    """Turn a model or dict into something BSON can encode."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if isinstance(data, dict):
        return {k: to_document(v) for k, v in data.items() if k != "id"}
    if isinstance(data, (list, tuple)):
        return [to_document(v) for v in data]
    if isinstance(data, Enum):
        return data.value
    return data


def from_document(model: Type[M], doc: Optional[Dict[str, Any]]) -> Optional[M]:
    if doc is None:
        return None
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return model.model_validate(data)


async def create_document(db: AsyncDatabase, collection_name: str, data: Any) -> str:
    doc = to_document(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = await db[collection_name].insert_one(doc)
    return str(result.inserted_id)


async def get_documents(db: AsyncDatabase, collection_name: str, filter_dict: Optional[dict] = None,
                        limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return await cursor.to_list(length=None)
