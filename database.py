"""
MongoDB access for the RentCar API.

`db` is None when DATABASE_URL is not configured; callers check for that and
report the database as unavailable. Collection names are the lowercase of the
schema class name (Car -> "car").
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "rentcar")

client: Optional[MongoClient] = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000, socketTimeoutMS=45000)
    db = client[DATABASE_NAME]


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so store them that way too
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: str) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping createdAt/updatedAt. Returns the new id."""
    if db is None:
        raise RuntimeError("Database not available")
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id")) if doc.get("_id") else None
    # Convert datetime to isoformat
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["booking"].create_index("userId")
    database["otp"].create_index([("email", 1), ("type", 1)])
    database["notification"].create_index("userId")
