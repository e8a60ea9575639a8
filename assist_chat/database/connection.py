import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from assist_chat.config import Settings


logger = logging.getLogger(__name__)


def connect_to_mongo(settings: Settings) -> AsyncIOMotorClient:
    client = AsyncIOMotorClient(
        settings.mongodb_uri,
        appname="assist-chat",
        maxPoolSize=20,
        minPoolSize=1,
        serverSelectionTimeoutMS=5000,
    )
    logger.info("Mongo client created for database %s", settings.database_name)
    return client


def close_mongo_connection(client: AsyncIOMotorClient) -> None:
    client.close()
    logger.info("Mongo client closed")


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    conversations = db["conversations"]
    # at most one conversation per participant set and request scope
    await conversations.create_index(
        [("participants_hash", ASCENDING), ("request_id", ASCENDING)],
        unique=True,
        name="participants_hash_scope",
    )
    await conversations.create_index([("participants", ASCENDING)])
    await conversations.create_index([("last_message_at", DESCENDING)])

    metas = db["conversation_meta"]
    await metas.create_index(
        [("conversation_id", ASCENDING), ("user_id", ASCENDING)],
        unique=True,
        name="conversation_user",
    )
    await metas.create_index([("user_id", ASCENDING)])

    await db["messages"].create_index(
        [("conversation_id", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)]
    )
    await db["devices"].create_index([("user_id", ASCENDING)])
    await db["devices"].create_index([("token", ASCENDING)])
