"""
MongoDB access

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; callers
check `get_db()` and answer with a server error in that case.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from config import get_settings
from exceptions import PersistenceError

logger = logging.getLogger(__name__)

_settings = get_settings()
client: Optional[MongoClient] = None
db = None

if _settings.database_url and _settings.database_name:
    client = MongoClient(
        _settings.database_url,
        serverSelectionTimeoutMS=int(_settings.external_timeout * 1000),
        tz_aware=True,
    )
    db = client[_settings.database_name]


def get_db():
    if db is None:
        raise PersistenceError("Database not configured")
    return db


def to_object_id(id_str: str) -> Optional[ObjectId]:
    """Parse an id from a URL; None when it is not a valid ObjectId."""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    return dict(data)


def insert_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert one document with timestamps and return it as stored."""
    now = datetime.now(timezone.utc)
    doc = _as_dict(data)
    doc["created_at"] = now
    doc["updated_at"] = now
    try:
        result = get_db()[collection_name].insert_one(doc)
    except PyMongoError as e:
        logger.exception("Insert into %s failed", collection_name)
        raise PersistenceError("Failed to save document") from e
    doc["_id"] = result.inserted_id
    return doc


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    return str(insert_document(collection_name, data)["_id"])


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    try:
        cursor = get_db()[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)
    except PyMongoError as e:
        logger.exception("Query on %s failed", collection_name)
        raise PersistenceError("Failed to read documents") from e


def get_document(collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        return get_db()[collection_name].find_one(filter_dict)
    except PyMongoError as e:
        logger.exception("Lookup on %s failed", collection_name)
        raise PersistenceError("Failed to read document") from e


def update_document(collection_name: str, _id: ObjectId, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply a $set to one document; returns the updated document or None."""
    changes = dict(fields)
    changes["updated_at"] = datetime.now(timezone.utc)
    try:
        return get_db()[collection_name].find_one_and_update(
            {"_id": _id}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
    except PyMongoError as e:
        logger.exception("Update on %s failed", collection_name)
        raise PersistenceError("Failed to update document") from e


def delete_document(collection_name: str, _id: ObjectId) -> bool:
    try:
        res = get_db()[collection_name].delete_one({"_id": _id})
    except PyMongoError as e:
        logger.exception("Delete on %s failed", collection_name)
        raise PersistenceError("Failed to delete document") from e
    return res.deleted_count > 0
