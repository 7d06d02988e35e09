"""
MongoDB access for the wholesale ordering API.

`db` is None when DATABASE_URL is not configured; routes check for that and
answer with a 500 instead of failing at import time.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import MongoClient
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "wholesale")

_client: Optional[MongoClient] = None
db = None

if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL not set, database is unavailable")


def now_iso() -> str:
    """UTC timestamp as an ISO-8601 string that sorts lexicographically."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def create_document(collection_name: str, data: Any) -> str:
    """Insert a document (dict or pydantic model) and return its id as a string."""
    if db is None:
        raise RuntimeError("Database not configured")
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = now_iso()
    doc.setdefault("createdAt", now)
    doc.setdefault("updatedAt", now)
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[dict]:
    if db is None:
        raise RuntimeError("Database not configured")
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
