from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase

from assist_chat.models.device import DeviceDocument


class DeviceRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["devices"]

    async def get_tokens_for_users(self, user_ids: List[str]) -> List[DeviceDocument]:
        if not user_ids:
            return []
        cur = self.collection.find({"user_id": {"$in": list(user_ids)}}, {"_id": 0, "user_id": 1, "platform": 1, "token": 1})
        return await cur.to_list(length=1000)

    async def remove_tokens(self, tokens: List[str]) -> int:
        if not tokens:
            return 0
        result = await self.collection.delete_many({"token": {"$in": list(tokens)}})
        return result.deleted_count or 0
