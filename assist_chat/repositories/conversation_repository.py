from typing import List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from assist_chat.models.conversation import ConversationDocument, participants_hash
from assist_chat.utils.clock import utcnow


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def get(self, conversation_id: ObjectId) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    async def find_or_create(
        self,
        participants: List[str],
        request_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Tuple[ConversationDocument, bool]:
        """Return ``(conversation, created)`` for the participant set and request scope.

        The unique index on ``(participants_hash, request_id)`` decides concurrent
        creations; the loser re-reads and returns the winner's document.
        """
        members = sorted({str(p) for p in participants})
        key = {"participants_hash": participants_hash(members), "request_id": request_id}
        existing = await self.collection.find_one(key)
        if existing:
            return existing, False

        now = utcnow()
        doc: ConversationDocument = {
            **key,
            "participants": members,
            "title": title,
            "last_message": None,
            "last_message_at": now,
            "created_at": now,
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            winner = await self.collection.find_one(key)
            if winner is None:
                raise
            return winner, False
        doc["_id"] = result.inserted_id
        return doc, True

    async def update_preview(self, conversation_id: ObjectId, preview: str, at) -> None:
        await self.collection.update_one(
            {"_id": conversation_id},
            {"$set": {"last_message": preview, "last_message_at": at}},
        )

    async def ids_for_user(self, user_id: str) -> List[str]:
        cursor = self.collection.find({"participants": user_id}, {"_id": 1})
        return [str(doc["_id"]) async for doc in cursor]

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[ConversationDocument]:
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        cursor = self.collection.find({"participants": user_id}).sort(sort).limit(limit)
        return await cursor.to_list(length=limit)

    async def delete(self, conversation_id: ObjectId) -> bool:
        result = await self.collection.delete_one({"_id": conversation_id})
        return result.deleted_count > 0
