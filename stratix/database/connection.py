import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from stratix.config import get_settings
from stratix.repositories.conversation_repository import ConversationRepository
from stratix.repositories.message_repository import MessageRepository
from stratix.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> AsyncIOMotorDatabase:
    global _client, _database
    settings = get_settings()
    _client = AsyncIOMotorClient(settings.mongodb_url, tz_aware=True)
    _database = _client[settings.mongodb_db]
    await ensure_indexes(_database)
    logger.info("Connected to MongoDB database %s", settings.mongodb_db)
    return _database


async def close_mongo_connection() -> None:
    global _client, _database
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _database = None


def set_database(db: Optional[AsyncIOMotorDatabase]) -> None:
    global _database
    _database = db


def get_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError("MongoDB is not connected")
    return _database


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await UserRepository(db).ensure_indexes()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
