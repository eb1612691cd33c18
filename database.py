"""
MongoDB access for the Rental Offers API.

The module-level `db` handle is built from DATABASE_URL / DATABASE_NAME and is
None when either is unset. Routes receive it through the `get_db` dependency
so tests can swap in another database.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import config
from errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = _client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise UpstreamUnavailable("Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("username", ASCENDING)], unique=True)
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["apartment"].create_index([("owner_id", ASCENDING)])
    database["offer"].create_index([("apartment_id", ASCENDING)])
    database["offer"].create_index([("tenant_id", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an identifier, returning None for anything that is not an ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out = {**doc}
    out["id"] = str(out.pop("_id"))
    return out


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> str:
    now = utcnow()
    doc = {**data, "created_at": now, "updated_at": now}
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]
