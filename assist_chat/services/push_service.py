import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set

from bson import ObjectId

from assist_chat.repositories.conversation_repository import ConversationRepository
from assist_chat.repositories.device_repository import DeviceRepository
from assist_chat.utils.websocket_manager import ConnectionManager, conv_room


logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 120


def preview_body(text: str, attachment: Optional[str] = None) -> str:
    if attachment and not text:
        return "Sent a photo"
    if len(text) > PREVIEW_LIMIT:
        return text[:PREVIEW_LIMIT - 3] + "…"
    return text or "New message"


class PushBridge:
    """Push notifications for users who will not see the realtime event.

    Delivery is best-effort: nothing raised here reaches the caller.
    """

    def __init__(
        self,
        device_repo: DeviceRepository,
        providers: Dict[str, object],
        connections: ConnectionManager,
        conversation_repo: Optional[ConversationRepository] = None,
    ) -> None:
        self._device_repo = device_repo
        self._providers = providers
        self._connections = connections
        self._conversation_repo = conversation_repo
        # strong references; the loop only keeps weak ones
        self._tasks: Set[asyncio.Task] = set()

    async def notify_users(self, user_ids: Iterable[str], title: str, body: str, data: Optional[dict] = None) -> None:
        user_ids = sorted(set(user_ids))
        if not user_ids:
            return
        try:
            devices = await self._device_repo.get_tokens_for_users(user_ids)
            by_platform: Dict[str, List[str]] = {}
            for device in devices:
                tokens = by_platform.setdefault(device.get("platform") or "expo", [])
                if device.get("token") and device["token"] not in tokens:
                    tokens.append(device["token"])

            invalid: List[str] = []
            for platform, tokens in by_platform.items():
                provider = self._providers.get(platform)
                if provider is None:
                    logger.debug("No push provider for platform %s", platform)
                    continue
                invalid.extend(await provider.send(tokens, title, body, data))

            if invalid:
                removed = await self._device_repo.remove_tokens(invalid)
                logger.info("Pruned %d unregistered push tokens", removed)
        except Exception as exc:
            logger.warning("Push to %s failed: %s", user_ids, exc)

    async def notify_absent(
        self,
        conversation_id: str,
        exclude_user_id: str,
        title: str,
        body: str,
        participants: Optional[Iterable[str]] = None,
        data: Optional[dict] = None,
    ) -> List[str]:
        """Push to participants not joined to the conversation room; returns who was targeted."""
        try:
            if participants is None:
                conv = await self._conversation_repo.get(ObjectId(conversation_id))
                participants = conv.get("participants", []) if conv else []
            candidates = {str(p) for p in participants} - {exclude_user_id}
            present = await self._connections.present_users(conv_room(conversation_id), candidates)
            targets = sorted(candidates - present)
        except Exception as exc:
            logger.warning("Presence lookup for conversation %s failed: %s", conversation_id, exc)
            return []
        if targets:
            await self.notify_users(
                targets,
                title,
                body,
                data or {"type": "chat", "conversationId": conversation_id},
            )
        return targets

    def notify_absent_later(
        self,
        conversation_id: str,
        exclude_user_id: str,
        title: str,
        body: str,
        participants: Optional[Iterable[str]] = None,
        data: Optional[dict] = None,
    ) -> asyncio.Task:
        """Run ``notify_absent`` as a background task so the caller never waits on providers."""
        task = asyncio.create_task(
            self.notify_absent(conversation_id, exclude_user_id, title, body, participants, data),
            name=f"push:{conversation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background %s failed: %s", task.get_name(), exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for background pushes; whatever is still running after ``timeout`` is cancelled."""
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %d background pushes at shutdown", len(still_running))
