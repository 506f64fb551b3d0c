import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from edulink_chat.config import settings


logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo(url: str | None = None, db_name: str | None = None) -> AsyncIOMotorDatabase:
    global _client, _database
    if _database is not None:
        return _database
    _client = AsyncIOMotorClient(url or settings.mongo_url, tz_aware=True)
    _database = _client[db_name or settings.mongo_db_name]
    logger.info(f"Connected to MongoDB database {_database.name}")
    return _database


async def close_mongo_connection() -> None:
    global _client, _database
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _database = None


def get_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError("MongoDB is not connected; call connect_to_mongo() first")
    return _database


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()
