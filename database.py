"""
Database access

MongoDB connection shared by the API. Each collection name is the lowercased
schema name from ``schemas.py`` (``user``, ``address``, ``product``, ...).
When ``DATABASE_URL`` is not configured ``db`` stays ``None``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import InvalidRequest, StoreUnavailable

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = MongoClient(DATABASE_URL) if DATABASE_URL else None
db: Optional[Database] = client[DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise StoreUnavailable("Database not available")
    return db


def ensure_indexes(database: Database) -> None:
    """Create the unique keys the services rely on."""
    database["user"].create_index("email", unique=True)
    database["collection"].create_index("slug", unique=True)
    database["cart"].create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING), ("size", ASCENDING)], unique=True
    )
    database["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["order"].create_index("payment_id", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["address"].create_index("user_id")
    logger.info("Indexes ensured on %s", database.name)


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    database = database if database is not None else get_db()
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    doc.setdefault("created_at", now())
    doc.setdefault("updated_at", doc["created_at"])
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def to_object_id(value: str, what: str = "id") -> ObjectId:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidRequest(f"Invalid {what}", fields={what: "must be a 24-character hex id"})
    return ObjectId(value)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc
