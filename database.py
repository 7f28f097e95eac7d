"""
MongoDB access for the storefront.

Every collection is named after the lowercase class name of its schema in
schemas.py (User -> "user", Order -> "order", ...).
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

from bson.objectid import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = as_utc(v).isoformat()
        elif isinstance(v, list):
            doc[k] = [serialize_doc(i) if isinstance(i, dict) else i for i in v]
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert one document, stamping created_at / updated_at, and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = get_db()[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes():
    database = get_db()
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["category"].create_index([("slug", ASCENDING)], unique=True)
    database["session"].create_index([("sid", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING)])
    database["review"].create_index([("product_id", ASCENDING)])
    database["product"].create_index([("category_id", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)
