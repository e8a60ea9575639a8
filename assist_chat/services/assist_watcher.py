import asyncio
import logging
from contextlib import suppress
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from assist_chat.repositories.assist_request_repository import AssistRequestRepository
from assist_chat.services.push_service import PushBridge
from assist_chat.utils.normalize import assist_summary
from assist_chat.utils.websocket_manager import OPERATORS_ROOM, ConnectionManager


logger = logging.getLogger(__name__)

WATCH_PIPELINE = [{"$match": {"operationType": {"$in": ["insert", "update", "replace"]}}}]


def is_newly_pending(change: Dict[str, Any]) -> bool:
    op = change.get("operationType")
    if op in ("insert", "replace"):
        doc = change.get("fullDocument") or {}
        return str(doc.get("status") or "pending") == "pending"
    if op == "update":
        updated = (change.get("updateDescription") or {}).get("updatedFields") or {}
        return "status" in updated and str(updated["status"]) == "pending"
    return False


class AssistRequestWatcher:
    """Broadcasts newly pending assistance requests to the operators room.

    Runs as a background task between ``start()`` and ``stop()``. A store
    without change streams (standalone mongod) disables it with one warning.
    """

    def __init__(
        self,
        assist_repo: AssistRequestRepository,
        connections: ConnectionManager,
        push: Optional[PushBridge] = None,
    ) -> None:
        self._assist_repo = assist_repo
        self._connections = connections
        self._push = push
        self._task: Optional[asyncio.Task] = None
        self.enabled = True

    def start(self) -> None:
        if self._task is None and self.enabled:
            self._task = asyncio.create_task(self._run(), name="assist-request-watcher")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        try:
            async with self._assist_repo.collection.watch(WATCH_PIPELINE, full_document="updateLookup") as stream:
                logger.info("Assist request watcher started")
                async for change in stream:
                    await self.handle_change(change)
        except PyMongoError as exc:
            self.enabled = False
            logger.warning("Assist request watcher disabled: %s", exc)

    async def handle_change(self, change: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not is_newly_pending(change):
            return None
        doc = change.get("fullDocument") or {}
        doc_id = doc.get("_id") or (change.get("documentKey") or {}).get("_id")
        if not doc_id:
            return None

        summary = assist_summary(doc, doc_id)
        try:
            await self._connections.emit(OPERATORS_ROOM, "assist:created", summary)
        except Exception as exc:
            logger.warning("assist:created broadcast for %s failed: %s", summary["id"], exc)

        if self._push is not None:
            try:
                operator_ids = await self._assist_repo.operator_user_ids()
            except PyMongoError as exc:
                logger.warning("Operator lookup failed: %s", exc)
                operator_ids = []
            body = f"{summary['placeName']}, {summary['address']}" if summary["address"] else summary["placeName"]
            await self._push.notify_users(
                operator_ids, "New request", body, {"type": "assist", "requestId": summary["id"]}
            )
        return summary
