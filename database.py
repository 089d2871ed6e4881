"""
MongoDB access

A single pymongo client is created at import time when DATABASE_URL is set.
Routes receive the database through the get_db dependency so tests can swap
in another Database object.
"""
import logging
from datetime import datetime, timezone
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import get_settings
from errors import DatabaseUnavailableError, PersistenceError

logger = logging.getLogger(__name__)

RUGS = "rug"
CARTS = "cart"
ORDERS = "order"
SHIPPING_FEES = "shipping_fee"
REVOKED_TOKENS = "revoked_token"

_settings = get_settings()
_client: Optional[MongoClient] = None
db: Optional[Database] = None

if _settings.database_url:
    try:
        _client = MongoClient(_settings.database_url, serverSelectionTimeoutMS=10000, socketTimeoutMS=45000)
        db = _client[_settings.database_name]
    except Exception as e:
        logger.error("MongoDB client could not be created: %s", e)
        db = None


def get_db() -> Database:
    if db is None:
        raise DatabaseUnavailableError()
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """pymongo hands back naive datetimes that are implicitly UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for a 24-char hex string, or None if it is not one."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value) and len(value) == 24:
        return ObjectId(value)
    return None


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True, exclude_none=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def doc_to_dict(doc: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-friendly copy of a document: ObjectIds to str, datetimes to ISO, _id to id."""
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        out[k] = _to_jsonable(v)
    if "_id" in out:
        out["id"] = out.pop("_id")
    return out


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def ensure_indexes(database: Database) -> None:
    database[RUGS].create_index([("isActive", ASCENDING)])
    database[RUGS].create_index([("category", ASCENDING)])
    database[RUGS].create_index([("brand", ASCENDING)])
    database[RUGS].create_index([("createdAt", DESCENDING)])
    database[CARTS].create_index([("sessionId", ASCENDING)], unique=True)
    database[CARTS].create_index([("products.productId", ASCENDING)])
    database[ORDERS].create_index([("email", ASCENDING), ("createdAt", DESCENDING)])
    database[ORDERS].create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    database[ORDERS].create_index([("stockCommitted", ASCENDING)])
    database[SHIPPING_FEES].create_index([("country", ASCENDING)], unique=True)
    database[REVOKED_TOKENS].create_index([("expiresAt", ASCENDING)], expireAfterSeconds=0)
    database[REVOKED_TOKENS].create_index([("token", ASCENDING)], unique=True)


@contextmanager
def persistence_guard(message: str) -> Iterator[None]:
    """Turn driver errors into a PersistenceError carrying a caller-safe message."""
    try:
        yield
    except PyMongoError as e:
        logger.exception("%s: %s", message, e)
        raise PersistenceError(message) from e


def naive_utc(value: datetime) -> datetime:
    """Query form of a datetime; MongoDB compares dates as naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
