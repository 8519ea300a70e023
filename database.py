"""MongoDB access for the marketplace API.

``db`` is None when no ``DATABASE_URL`` is configured; routes obtain the
database through :func:`get_db` so tests can substitute their own.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import settings
from errors import InvalidIdError

logger = logging.getLogger(__name__)

USERS = "users"
PROPERTIES = "properties"
WISHLIST = "wishlist"
OFFERS = "makeOffer"
REVIEWS = "reviews"
PAYMENTS = "payments"

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.database_url:
    client = MongoClient(settings.database_url, timeoutMS=settings.request_timeout_ms)
    db = client[settings.database_name]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def now_utc():
    return datetime.now(timezone.utc)


def to_object_id(id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise InvalidIdError(f"Invalid ID format: {id_str}")
    return ObjectId(id_str)


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = now_utc()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[list] = None,
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def ensure_indexes(database: Database) -> None:
    """Create the indexes the handlers rely on (idempotent)."""
    database[USERS].create_index("email", unique=True)
    database[WISHLIST].create_index([("propertyId", ASCENDING), ("userEmail", ASCENDING)], unique=True)
    database[PAYMENTS].create_index("transaction_Id", unique=True)
    database[OFFERS].create_index("propertyId")
    database[PROPERTIES].create_index("agent_email")
    logger.info("Database indexes ensured on %s", database.name)
