"""
MongoDB access for the marketplace backend.

Connection settings come from the environment (or a local .env file):
- DATABASE_URL  -> MongoDB connection string
- DATABASE_NAME -> database to use

When either is missing `db` stays None and the API reports the database as
not configured instead of failing at import time.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client: Optional[MongoClient] = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


class DatabaseNotConfigured(RuntimeError):
    pass


def get_db():
    """FastAPI dependency returning the active database handle."""
    if db is None:
        raise DatabaseNotConfigured("Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: Any) -> Optional[ObjectId]:
    """Parse an id string, returning None when it is not a valid ObjectId."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        return None


def find_by_id(database, collection_name: str, id_str: Any) -> Optional[dict]:
    _id = oid(id_str)
    if _id is None:
        return None
    return database[collection_name].find_one({"_id": _id})


def to_str_id(doc: Optional[dict], hidden: tuple = ("password_hash",)) -> Optional[dict]:
    if doc is None:
        return None
    d = {k: v for k, v in doc.items() if k not in hidden}
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at / updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict["created_at"] = stamp
    data_dict["updated_at"] = stamp
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, newest_first: bool = False) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if newest_first:
        cursor = cursor.sort("created_at", -1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database) -> None:
    database["cart"].create_index("client_id", unique=True)
    database["category"].create_index("categ_name", unique=True)
    database["client"].create_index("username", unique=True)
    database["client"].create_index("email", unique=True)
    database["admin"].create_index("username", unique=True)
    logger.info("database.indexes_ready", database=database.name)
