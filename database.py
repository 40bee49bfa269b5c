"""
MongoDB access helpers.

The client is created lazily by pymongo, so importing this module never
blocks on the network. Routes receive the database through the get_db
dependency.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, TypeVar, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config

logger = logging.getLogger(__name__)

T = TypeVar("T")

client: Optional[MongoClient] = MongoClient(config.DATABASE_URL) if config.DATABASE_URL else None
db: Optional[Database] = client[config.DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def get_optional_db() -> Optional[Database]:
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = now_utc()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc, session=session)
    return str(result.inserted_id)


def to_str_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
    return d


def parse_object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail="Invalid id")
    return ObjectId(value)


def run_atomically(database: Database, fn: Callable[[Any], T]) -> T:
    """
    Run fn(session) inside a multi-document transaction when enabled.

    Without transactions fn receives None and is responsible for its own
    compare-and-swap guards and rollback.
    """
    if not config.USE_TRANSACTIONS:
        return fn(None)
    with database.client.start_session() as session:
        return session.with_transaction(fn)


def ensure_indexes(database: Database) -> None:
    try:
        database["user"].create_index([("email", ASCENDING)], unique=True)
        database["user"].create_index([("level", ASCENDING)])
        database["user"].create_index([("points", DESCENDING)])

        database["item"].create_index([("category", ASCENDING), ("status", ASCENDING)])
        database["item"].create_index([("uploader_id", ASCENDING)])
        database["item"].create_index([("points", ASCENDING)])
        database["item"].create_index([("created_at", DESCENDING)])
        database["item"].create_index([("tags", ASCENDING)])
        database["item"].create_index([("location", ASCENDING)])

        database["swap"].create_index([("requester_id", ASCENDING), ("status", ASCENDING)])
        database["swap"].create_index([("provider_id", ASCENDING), ("status", ASCENDING)])
        database["swap"].create_index([("requested_item_id", ASCENDING)])
        database["swap"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    except PyMongoError:
        logger.exception("Index creation failed; continuing without indexes")


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
        "total_items": total,
        "items_per_page": limit,
    }
