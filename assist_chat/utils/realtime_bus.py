import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from assist_chat.config import Settings


logger = logging.getLogger(__name__)

# every room emit travels on this channel when Redis is configured
ROOM_CHANNEL = "realtime:rooms"


class NoopBus:
    """Single-process mode: emits are delivered locally, presence is local only."""

    enabled = False

    async def publish(self, channel: str, message: str) -> bool:
        return False

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        class _Sub:
            async def run(self):
                await asyncio.Future()
            async def cancel(self):
                return
        return _Sub()

    async def set_presence(self, user_id: str, ttl_seconds: int = 60) -> None:
        return

    async def is_online(self, user_id: str) -> bool:
        return False

    async def track_room(self, user_id: str, room: str, delta: int, ttl_seconds: int = 60) -> None:
        return

    async def users_in_room(self, room: str, candidates: Iterable[str]) -> Set[str]:
        return set()

    async def close(self) -> None:
        return


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url, decode_responses=True)

    async def publish(self, channel: str, message: str) -> bool:
        try:
            await self._redis.publish(channel, message)
        except RedisError as exc:
            logger.warning("Publish on %s failed: %s", channel, exc)
            return False
        return True

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            await on_message(msg.get("data"))
                    except RedisError as exc:
                        logger.warning("Bus subscription on %s failed: %s", channel, exc)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except RedisError as exc:
                    logger.warning("Bus unsubscribe from %s failed: %s", channel, exc)

        return _Sub()

    async def set_presence(self, user_id: str, ttl_seconds: int = 60) -> None:
        await self._redis.set(f"presence:{user_id}", "online", ex=ttl_seconds)
        await self._redis.expire(f"rooms:{user_id}", ttl_seconds)

    async def is_online(self, user_id: str) -> bool:
        ttl = await self._redis.ttl(f"presence:{user_id}")
        return bool(ttl and ttl > 0)

    async def track_room(self, user_id: str, room: str, delta: int, ttl_seconds: int = 60) -> None:
        """Count this user's connections in ``room`` across every process."""
        key = f"rooms:{user_id}"
        try:
            count = await self._redis.hincrby(key, room, delta)
            if count <= 0:
                await self._redis.hdel(key, room)
            await self._redis.expire(key, ttl_seconds)
        except RedisError as exc:
            logger.warning("Room count for %s in %s failed: %s", user_id, room, exc)

    async def users_in_room(self, room: str, candidates: Iterable[str]) -> Set[str]:
        present = set()
        for user_id in candidates:
            if not await self.is_online(user_id):
                continue
            count = await self._redis.hget(f"rooms:{user_id}", room)
            if count and int(count) > 0:
                present.add(user_id)
        return present

    async def close(self) -> None:
        await self._redis.aclose()


def get_bus(settings: Settings):
    if not settings.redis_url:
        return NoopBus()
    return RedisBus(settings.redis_url)
