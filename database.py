"""
MongoDB access helpers

The connection is created lazily from DATABASE_URL / DATABASE_NAME. When either
is missing ``get_db()`` returns None and the API reports the database as not
configured. Collection names follow the schemas module: lowercase class name.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_config

_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()

UNIQUE_INDEXES = {
    "order": ["order_number"],
    "customer": ["email", "phone", "customer_id"],
    "menuitem": ["menu_id"],
    "user": ["email"],
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_db() -> Optional[Database]:
    global _client, _db
    if _db is None:
        with _lock:
            config = get_config()
            if _db is None and config.database_url and config.database_name:
                _client = MongoClient(config.database_url)
                _db = _client[config.database_name]
    return _db


def use_database(database: Optional[Database]) -> None:
    """Point the helpers at an explicit database (tests, scripts)."""
    global _db
    _db = database


def ensure_indexes(database: Database) -> None:
    for collection, fields in UNIQUE_INDEXES.items():
        for field in fields:
            database[collection].create_index([(field, ASCENDING)], unique=True, name=f"{field}_unique")


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse a string id; malformed ids resolve to None rather than raising."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def _resolve(database: Optional[Database]) -> Database:
    database = database if database is not None else get_db()
    if database is None:
        raise RuntimeError("Database not configured")
    return database


def create_document(collection_name: str, data: Dict[str, Any], database: Optional[Database] = None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    record = dict(data)
    stamp = now_utc()
    record.setdefault("created_at", stamp)
    record["updated_at"] = stamp
    result = _resolve(database)[collection_name].insert_one(record)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    database: Optional[Database] = None,
) -> List[Dict[str, Any]]:
    cursor = _resolve(database)[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_document(doc) for doc in cursor]


def get_document(collection_name: str, document_id: Any, database: Optional[Database] = None) -> Optional[Dict[str, Any]]:
    oid = to_object_id(document_id)
    if oid is None:
        return None
    return _resolve(database)[collection_name].find_one({"_id": oid})


def serialize_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Make a raw document JSON friendly: ObjectIds become strings."""
    out = {}
    for key, value in doc.items():
        out[key] = str(value) if isinstance(value, ObjectId) else value
    return out
