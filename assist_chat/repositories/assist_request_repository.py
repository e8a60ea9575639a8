from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase


class AssistRequestRepository:
    """Read-only view of the assistance-request lifecycle collections."""

    def __init__(self, db: AsyncIOMotorDatabase, collection: str = "assistrequests", operators: str = "operators") -> None:
        self._db = db
        self._collection_name = collection
        self._operators_name = operators

    @property
    def collection(self):
        return self._db[self._collection_name]

    async def get_owner_id(self, request_id: str) -> Optional[str]:
        try:
            oid = ObjectId(request_id)
        except (InvalidId, TypeError):
            return None
        doc = await self.collection.find_one({"_id": oid}, {"userId": 1, "user_id": 1})
        if not doc:
            return None
        owner = doc.get("userId") or doc.get("user_id")
        return str(owner) if owner else None

    async def operator_user_ids(self) -> List[str]:
        cursor = self._db[self._operators_name].find({}, {"user_id": 1})
        return [str(doc["user_id"]) async for doc in cursor if doc.get("user_id")]
