"""
MongoDB access for the marketplace.

Collections are named after the lowercased schema class (User -> "user",
TalentProduct -> "talentproduct"). Timestamps are stored as naive UTC, which
is what pymongo hands back on reads.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

log = logging.getLogger(__name__)

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def oid(s: Any) -> ObjectId:
    if isinstance(s, ObjectId):
        return s
    try:
        return ObjectId(s)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def require_db():
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def create_document(collection_name: str, data) -> str:
    if isinstance(data, BaseModel):
        payload = data.model_dump(exclude_none=True)
    else:
        payload = dict(data)
    stamp = now_utc()
    payload.setdefault("created_at", stamp)
    payload["updated_at"] = stamp
    result = require_db()[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict] = None, limit: Optional[int] = None):
    cursor = require_db()[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc):
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif k == "passwordHash":
            continue
        else:
            out[k] = serialize_doc(v)
    return out


def ensure_indexes():
    database = require_db()
    database["user"].create_index("email", unique=True)
    database["session"].create_index("token", unique=True)
    database["item"].create_index([("seller", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index("orderId", unique=True)
    database["order"].create_index([("buyer", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("seller", ASCENDING), ("created_at", DESCENDING)])
    database["payment"].create_index("paymentId", unique=True)
    database["payment"].create_index([("status", ASCENDING), ("escrowStatus", ASCENDING)])
    database["commission"].create_index([("year", ASCENDING), ("month", ASCENDING)], unique=True)
    database["commission"].create_index("batchId", unique=True)
    database["review"].create_index(
        [("reviewer", ASCENDING), ("reviewee", ASCENDING), ("order", ASCENDING)], unique=True
    )
    database["conversation"].create_index("participantKey", unique=True)
    database["conversation"].create_index([("participants", ASCENDING), ("lastActivity", DESCENDING)])
    database["message"].create_index([("conversation", ASCENDING), ("created_at", DESCENDING)])
    database["category"].create_index("name", unique=True)
    database["category"].create_index("slug", unique=True)
    log.info("Indexes ensured on %s", database.name)
