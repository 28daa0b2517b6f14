"""
Database helpers

The Mongo client is created once at start-up by ``init_db`` and handed to
request handlers through the ``get_db`` dependency.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import settings
from logger import get_logger

logger = get_logger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

# Fields that never leave the API
PRIVATE_FIELDS = ("password", "token")


def init_db(url: Optional[str] = None, name: Optional[str] = None) -> Optional[Database]:
    global client, db
    url = url or settings.DATABASE_URL
    name = name or settings.DATABASE_NAME
    if not (url and name):
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
        return None
    client = MongoClient(url)
    db = client[name]
    ensure_indexes(db)
    logger.info(f"Connected to database {name}")
    return db


def close_db():
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def ensure_indexes(database: Database):
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("token", ASCENDING)])
    database["brand"].create_index([("name", ASCENDING)], unique=True)
    database["category"].create_index([("name", ASCENDING)], unique=True)


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> ObjectId:
    now = datetime.now(timezone.utc)
    doc = dict(data)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return result.inserted_id


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}).sort("_id", ASCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value).strip())
    except (InvalidId, TypeError):
        return None


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = _serialize_value(doc.pop("_id"))
    for field in PRIVATE_FIELDS:
        doc.pop(field, None)
    # Convert ObjectId in nested fields
    for k, v in list(doc.items()):
        doc[k] = _serialize_value(v)
    return doc
