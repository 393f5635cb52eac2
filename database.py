"""
MongoDB connection and document helpers.

The connection is configured through DATABASE_URL and DATABASE_NAME. When
either is missing, `db` stays None and the API reports the database as not
available.
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    try:
        client = MongoClient(DATABASE_URL)
        db = client[DATABASE_NAME]
    except Exception:
        logger.exception("Could not configure MongoDB client")
        db = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_id(database: Database, sequence: str) -> int:
    """Allocate the next integer id of a named sequence."""
    counter = database["counters"].find_one_and_update(
        {"_id": sequence},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a document with a sequential id and creation timestamp.

    Returns the stored document without Mongo's `_id`.
    """
    doc = dict(data)
    doc["id"] = next_id(database, collection_name)
    doc.setdefault("created_at", utcnow())
    database[collection_name].insert_one(doc)
    doc.pop("_id", None)
    return doc


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort=None, limit: Optional[int] = None):
    cursor = database[collection_name].find(filter_dict or {}, {"_id": 0})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
