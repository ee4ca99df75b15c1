"""MongoDB access: client, collections, indexes and id helpers."""

import logging
from typing import Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import settings
from errors import ValidationError

logger = logging.getLogger(__name__)

USERS = "user"
HOMES = "home"
BOOKINGS = "booking"

_client: Optional[MongoClient] = None


def get_db() -> Database:
    """FastAPI dependency returning the application database."""
    global _client
    if _client is None:
        _client = MongoClient(settings.database_url, tz_aware=True)
        logger.info("Connected MongoDB client for database %s", settings.database_name)
    return _client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("username", ASCENDING)], unique=True)
    db[HOMES].create_index([("owner_id", ASCENDING)])
    db[BOOKINGS].create_index([("home_id", ASCENDING)])


# Helpers

def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id", "InvalidId")


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d
