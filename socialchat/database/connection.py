from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from socialchat.core.config import Settings
from socialchat.core.logger import get_logger


logger = get_logger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo(settings: Settings) -> AsyncIOMotorDatabase:
    global _client, _db
    _client = AsyncIOMotorClient(settings.MONGODB_URI)
    _db = _client[settings.MONGODB_DB]
    logger.info(f"Connected to MongoDB database {settings.MONGODB_DB}")
    return _db


def use_database(db: AsyncIOMotorDatabase) -> None:
    """Install an already-built database handle (no client is owned)."""
    global _db
    _db = db


async def close_mongo_connection() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _db = None


def get_database() -> AsyncIOMotorDatabase:
    if _db is None:
        raise RuntimeError("MongoDB is not connected")
    return _db


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db["conversations"].create_index([("participants", ASCENDING)])
    await db["conversations"].create_index([("updated_at", DESCENDING)])
    await db["messages"].create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
    await db["users"].create_index([("username", ASCENDING)])
    await db["users"].create_index([("email", ASCENDING)])
