"""
Database access

Holds the shared MongoDB handle and the index setup.
`db` is None when DATABASE_URL / DATABASE_NAME are not configured.
"""

import logging
from typing import Optional

from pymongo import ASCENDING, MongoClient

from config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

client: Optional[MongoClient] = None
db = None

if _settings.database_url and _settings.database_name:
    client = MongoClient(_settings.database_url)
    db = client[_settings.database_name]
    logger.info(f"MongoDB configured: {_settings.database_name}")
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")


def ensure_indexes(database=None) -> None:
    """Create the indexes the pin layer relies on. Safe to call repeatedly."""
    database = database if database is not None else db
    if database is None:
        return
    # one link per (user, pin)
    for name in ("likedpin", "savedpin"):
        database[name].create_index(
            [("user_id", ASCENDING), ("pin_id", ASCENDING)], unique=True
        )
    database["pin"].create_index([("created_by", ASCENDING)])
    database["user"].create_index([("account_id", ASCENDING)], unique=True)
