"""
Database Helper Functions

MongoDB access shared by the API. Each collection is named after the lowercased
schema class (User -> "user", PromoCode -> "promocode").
"""
import logging
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient, ASCENDING, DESCENDING

from errors import InternalError, ValidationError
from settings import settings

logger = logging.getLogger(__name__)

_client = None
db = None

if settings.database_url and settings.database_name:
    _client = MongoClient(settings.database_url)
    db = _client[settings.database_name]


def get_db():
    if db is None:
        raise InternalError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def utcnow() -> datetime:
    # naive UTC, which is what pymongo hands back by default
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(value: str, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label}")
    return ObjectId(value)


def create_document(db, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def serialize_doc(doc: Optional[dict]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    doc.pop("hashed_password", None)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def ensure_indexes(db):
    db["user"].create_index("email", unique=True)
    db["promocode"].create_index("code", unique=True)
    db["promocode"].create_index([("valid_from", ASCENDING), ("valid_until", ASCENDING)])
    db["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["review"].create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index("payment_intent_id", unique=True, sparse=True)
    db["order"].create_index("order_status")
    db["product"].create_index([("category_id", ASCENDING), ("is_active", ASCENDING), ("is_featured", ASCENDING)])
    logger.info("Database indexes ensured")
