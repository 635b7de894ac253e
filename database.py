import logging
from typing import Tuple

from fastapi import Request
from pymongo import MongoClient
from pymongo.database import Database

import config
from exceptions import PersistenceError

logger = logging.getLogger(__name__)


def connect(url: str = config.MONGODB_URL, name: str = config.DATABASE_NAME) -> Tuple[MongoClient, Database]:
    """Open the process-wide client. The driver connects lazily on first use."""
    client = MongoClient(url, serverSelectionTimeoutMS=5000)
    logger.info(f"MongoDB client created for database '{name}'")
    return client, client[name]


def close(client: MongoClient):
    client.close()
    logger.info("MongoDB client closed")


def get_db(request: Request) -> Database:
    """Dependency returning the database opened by the application lifespan."""
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise PersistenceError("Database is not connected")
    return db
