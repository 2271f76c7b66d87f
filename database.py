"""
MongoDB connection and document helpers.

The connection is configured from DATABASE_URL / DATABASE_NAME. When no URL is
set `db` stays None and every route that needs the database fails with a
server error; `/test` reports the missing configuration.
"""

import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.decimal128 import Decimal128
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import MongoClient
from pymongo.database import Database

from errors import InvalidRequest, ShopError
from pricing import from_decimal

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise ShopError("Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """MongoDB hands back naive UTC datetimes unless the client is tz-aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def query_time(value: datetime) -> datetime:
    """Naive UTC form for use inside query filters."""
    return as_utc(value).replace(tzinfo=None)


def parse_object_id(value: Any, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidRequest(f"Invalid {label}")
    return ObjectId(value)


def encode(value: Any) -> Any:
    """Prepare Python values for BSON: Decimal128 money, naive UTC datetimes."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, datetime):
        return query_time(value)
    if isinstance(value, dict):
        return {k: encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(v) for v in value]
    return value


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = encode(dict(data))
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    skip: int = 0,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(
    database: Database,
    collection_name: str,
    query: Dict[str, Any],
    page: int,
    limit: int,
    sort: Optional[List[tuple]] = None,
) -> Dict[str, Any]:
    page = max(page, 1)
    limit = max(limit, 1)
    total = database[collection_name].count_documents(query)
    docs = get_documents(
        database,
        collection_name,
        query,
        limit=limit,
        skip=(page - 1) * limit,
        sort=sort or [("created_at", -1)],
    )
    return {
        "items": docs,
        "page": page,
        "limit": limit,
        "totalItems": total,
        "totalPages": -(-total // limit),
    }


def to_response(value: Any) -> Any:
    """Convert a stored document into a JSON-safe dict with camelCase keys."""
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if key == "_id":
                out["id"] = to_response(item)
            else:
                out[to_camel(key)] = to_response(item)
        return out
    if isinstance(value, list):
        return [to_response(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (Decimal128, Decimal)):
        return from_decimal(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value
