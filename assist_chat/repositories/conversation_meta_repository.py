from typing import Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from assist_chat.models.conversation_meta import ConversationMetaDocument
from assist_chat.utils.clock import utcnow


class ConversationMetaRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversation_meta"]

    async def ensure(self, conversation_id: ObjectId, user_ids: List[str]) -> None:
        for user_id in user_ids:
            try:
                await self.collection.update_one(
                    {"conversation_id": conversation_id, "user_id": user_id},
                    {"$setOnInsert": {"unread": 0, "last_read_at": None}},
                    upsert=True,
                )
            except DuplicateKeyError:
                # another upsert created the row first
                continue

    async def increment_unread(self, conversation_id: ObjectId, user_id: str) -> int:
        """Atomically add one unread message for ``user_id``; returns the new count."""
        query = {"conversation_id": conversation_id, "user_id": user_id}
        update = {"$inc": {"unread": 1}, "$setOnInsert": {"last_read_at": None}}
        try:
            doc = await self.collection.find_one_and_update(
                query, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # lost an upsert race; the row exists now so a plain $inc is safe
            doc = await self.collection.find_one_and_update(
                query, {"$inc": {"unread": 1}}, return_document=ReturnDocument.AFTER
            )
        return int(doc.get("unread", 0)) if doc else 0

    async def reset_unread(self, conversation_id: ObjectId, user_id: str) -> None:
        query = {"conversation_id": conversation_id, "user_id": user_id}
        update = {"$set": {"unread": 0, "last_read_at": utcnow()}}
        try:
            await self.collection.update_one(query, update, upsert=True)
        except DuplicateKeyError:
            await self.collection.update_one(query, update)

    async def get_unread(self, conversation_id: ObjectId, user_id: str) -> int:
        doc = await self.collection.find_one({"conversation_id": conversation_id, "user_id": user_id})
        return int(doc.get("unread", 0)) if doc else 0

    async def unread_by_conversation(self, user_id: str, conversation_ids: List[ObjectId]) -> Dict[str, int]:
        if not conversation_ids:
            return {}
        cursor = self.collection.find({"user_id": user_id, "conversation_id": {"$in": conversation_ids}})
        return {str(doc["conversation_id"]): int(doc.get("unread", 0)) async for doc in cursor}

    async def get(self, conversation_id: ObjectId, user_id: str) -> Optional[ConversationMetaDocument]:
        return await self.collection.find_one({"conversation_id": conversation_id, "user_id": user_id})

    async def delete_for_conversation(self, conversation_id: ObjectId) -> int:
        result = await self.collection.delete_many({"conversation_id": conversation_id})
        return result.deleted_count or 0
