import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo import DESCENDING
from pymongo.errors import WriteError

from assist_chat.models.message import MessageDocument, MessageRecord
from assist_chat.utils.clock import to_naive_utc, utcnow


logger = logging.getLogger(__name__)


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def save_message(
        self,
        conversation_id: ObjectId,
        sender_id: str,
        content: str,
        attachment: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> MessageDocument:
        """Insert a message, degrading to an unvalidated insert of the same shape.

        The validated write goes through ``MessageRecord`` and the collection's
        schema validation; if either rejects it the raw document is written with
        validation bypassed so the send still succeeds.
        """
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "attachment": attachment,
            "created_at": to_naive_utc(created_at) or utcnow(),
        }
        try:
            record = MessageRecord(**doc).model_dump()
            result = await self.collection.insert_one(record)
            record["_id"] = result.inserted_id
            return record
        except (ValidationError, WriteError) as exc:
            logger.warning("Validated message insert failed, writing raw document: %s", exc)
        result = await self.collection.insert_one(dict(doc), bypass_document_validation=True)
        doc["_id"] = result.inserted_id
        return doc

    async def get_messages_by_conversation(
        self,
        conversation_id: ObjectId,
        limit: int = 50,
        before: Optional[datetime] = None,
        before_id: Optional[ObjectId] = None,
    ) -> List[MessageDocument]:
        """Newest ``limit`` messages older than the cursor, returned oldest first.

        The cursor is ``(before, before_id)``; messages sharing the ``before``
        timestamp are continued by ``_id``. With ``before`` alone the cut is a
        plain ``created_at < before``.
        """
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        if before is not None:
            ts = to_naive_utc(before)
            if before_id is None:
                query["created_at"] = {"$lt": ts}
            else:
                query["$or"] = [
                    {"created_at": {"$lt": ts}},
                    {"created_at": ts, "_id": {"$lt": before_id}},
                ]
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        cursor = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor.to_list(length=limit)
        return list(reversed(items))

    async def count_for_conversation(self, conversation_id: ObjectId) -> int:
        return await self.collection.count_documents({"conversation_id": conversation_id})

    async def delete_for_conversation(self, conversation_id: ObjectId) -> int:
        result = await self.collection.delete_many({"conversation_id": conversation_id})
        return result.deleted_count or 0
