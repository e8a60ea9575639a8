import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo.errors import PyMongoError

from assist_chat.repositories.conversation_meta_repository import ConversationMetaRepository
from assist_chat.repositories.conversation_repository import ConversationRepository
from assist_chat.repositories.message_repository import MessageRepository
from assist_chat.services.conversation_resolver import ConversationResolver
from assist_chat.services.errors import ConversationNotFound, MessageValidationError
from assist_chat.services.push_service import PushBridge, preview_body
from assist_chat.utils.clock import isoformat
from assist_chat.utils.ids import to_object_id
from assist_chat.utils.websocket_manager import ConnectionManager, conv_room


logger = logging.getLogger(__name__)

ATTACHMENT_PREVIEW = "[attachment]"


def sanitize_text(raw: Any) -> str:
    # collapses every run of whitespace, non-breaking spaces included
    return " ".join(str(raw or "").split())


def message_payload(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(doc.get("_id", "")),
        "conversationId": str(doc.get("conversation_id", "")),
        "from": str(doc.get("sender_id", "")),
        "text": doc.get("content") or "",
        "attachment": doc.get("attachment"),
        "createdAt": isoformat(doc.get("created_at")),
    }


def conversation_payload(conv: Dict[str, Any], unread: int = 0) -> Dict[str, Any]:
    return {
        "id": str(conv["_id"]),
        "participants": list(conv.get("participants", [])),
        "requestId": conv.get("request_id"),
        "title": conv.get("title"),
        "lastMessage": conv.get("last_message"),
        "lastMessageAt": isoformat(conv.get("last_message_at")),
        "createdAt": isoformat(conv.get("created_at")),
        "unread": unread,
    }


class ChatService:

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        meta_repo: ConversationMetaRepository,
        resolver: ConversationResolver,
        connections: ConnectionManager,
        push: PushBridge,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._meta_repo = meta_repo
        self._resolver = resolver
        self._connections = connections
        self._push = push

    async def get_conversation_for(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        """Load a conversation the user participates in.

        A missing conversation and a non-participant caller raise the same
        ``ConversationNotFound``.
        """
        conv = await self._conversation_repo.get(to_object_id(conversation_id))
        if not conv or user_id not in conv.get("participants", []):
            raise ConversationNotFound()
        return conv

    async def send_message(
        self,
        conversation_id: str,
        author_id: str,
        text: Any,
        attachment: Optional[str] = None,
    ) -> Dict[str, Any]:
        content = sanitize_text(text)
        attachment = str(attachment).strip() if attachment else None
        if not content and not attachment:
            raise MessageValidationError("Message needs text or an attachment")

        conv = await self.get_conversation_for(conversation_id, author_id)
        saved = await self._message_repo.save_message(conv["_id"], author_id, content, attachment)
        payload = message_payload(saved)
        cid = payload["conversationId"]

        preview = content or ATTACHMENT_PREVIEW
        try:
            await self._conversation_repo.update_preview(conv["_id"], preview, saved["created_at"])
        except PyMongoError as exc:
            logger.warning("Preview update for conversation %s failed: %s", cid, exc)

        recipients = [uid for uid in conv["participants"] if uid != author_id]
        unread: Dict[str, int] = {}
        for uid in recipients:
            try:
                unread[uid] = await self._meta_repo.increment_unread(conv["_id"], uid)
            except PyMongoError as exc:
                logger.warning("Unread increment for %s in %s failed: %s", uid, cid, exc)

        await self._connections.emit(conv_room(cid), "message:new", payload, exclude_users=[author_id])
        for uid, count in unread.items():
            await self._connections.emit_to_user(uid, "conversation:updated", {
                "conversationId": cid,
                "lastMessage": preview,
                "lastMessageAt": payload["createdAt"],
                "unread": count,
            })

        self._push.notify_absent_later(
            cid,
            author_id,
            "New message",
            preview_body(content, attachment),
            participants=conv["participants"],
        )
        return payload

    async def get_history(
        self,
        conversation_id: str,
        user_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Ascending page of history; fetching it counts as reading the conversation."""
        conv = await self.get_conversation_for(conversation_id, user_id)
        cursor_id = to_object_id(before_id, "message") if before_id else None
        docs = await self._message_repo.get_messages_by_conversation(
            conv["_id"], limit=limit, before=before, before_id=cursor_id
        )
        try:
            await self._meta_repo.reset_unread(conv["_id"], user_id)
        except PyMongoError as exc:
            logger.warning("Unread reset for %s in %s failed: %s", user_id, conversation_id, exc)
        return [message_payload(doc) for doc in docs]

    async def mark_read(self, conversation_id: str, user_id: str) -> None:
        conv = await self.get_conversation_for(conversation_id, user_id)
        await self._meta_repo.reset_unread(conv["_id"], user_id)

    async def list_conversations(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        convs = await self._conversation_repo.list_for_user(user_id, limit=limit)
        counts = await self._meta_repo.unread_by_conversation(user_id, [c["_id"] for c in convs])
        return [conversation_payload(c, counts.get(str(c["_id"]), 0)) for c in convs]

    async def create_conversation(
        self,
        creator_id: str,
        participants: Iterable[Any],
        title: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        members = {str(p) for p in participants or () if p}
        members.add(creator_id)
        if len(members) < 2:
            raise MessageValidationError("Not enough participants")

        conv, created = await self._conversation_repo.find_or_create(sorted(members), title=title or None)
        if created:
            try:
                await self._meta_repo.ensure(conv["_id"], conv["participants"])
            except PyMongoError as exc:
                logger.warning("Meta init for conversation %s failed: %s", conv["_id"], exc)
            await self._announce_created(conv, creator_id)
        unread = await self._meta_repo.get_unread(conv["_id"], creator_id)
        return conversation_payload(conv, unread), created

    async def ensure_conversation(
        self,
        caller_id: str,
        peer_user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        explicit_id: Optional[str] = None,
    ) -> Optional[str]:
        resolution = await self._resolver.resolve(caller_id, explicit_id, peer_user_id, request_id)
        if resolution.created:
            conv = await self._conversation_repo.get(to_object_id(resolution.conversation_id))
            if conv:
                await self._announce_created(conv, caller_id)
        return resolution.conversation_id

    async def delete_conversation(self, conversation_id: str, user_id: str) -> None:
        conv = await self.get_conversation_for(conversation_id, user_id)
        await self._message_repo.delete_for_conversation(conv["_id"])
        await self._meta_repo.delete_for_conversation(conv["_id"])
        await self._conversation_repo.delete(conv["_id"])

        cid = str(conv["_id"])
        await self._connections.emit(
            conv_room(cid), "conversation:deleted", {"id": cid, "conversationId": cid}, close_room=True
        )

    async def _announce_created(self, conv: Dict[str, Any], creator_id: str) -> None:
        data = conversation_payload(conv)
        for uid in conv["participants"]:
            if uid != creator_id:
                await self._connections.emit_to_user(uid, "conversation:created", data)
