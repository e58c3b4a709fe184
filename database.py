"""
MongoDB access helpers.

``db`` is None when DATABASE_URL/DATABASE_NAME are not configured; callers go
through ``get_db()`` so that a missing database surfaces as a 503 instead of
an AttributeError deep inside a handler.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import settings
from errors import DatabaseUnavailable, NotFound

db = None

if settings.database_url and settings.database_name:
    _client = MongoClient(settings.database_url)
    db = _client[settings.database_name]


def get_db():
    if db is None:
        raise DatabaseUnavailable("Database not available")
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(id_str: str, label: str = "Resource") -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise NotFound(f"{label} not found")
    return ObjectId(id_str)


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now_utc()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    newest_first: bool = True,
) -> List[dict]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if newest_first:
        cursor = cursor.sort("created_at", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes() -> None:
    database = get_db()
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["coupon"].create_index([("code", ASCENDING)], unique=True)
    database["order"].create_index([("short_order_id", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING)])
    database["payment"].create_index([("user_id", ASCENDING)])
    database["session"].create_index([("token", ASCENDING)], unique=True)
