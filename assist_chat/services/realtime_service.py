import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pymongo.errors import PyMongoError

from assist_chat.services.context import ServerContext
from assist_chat.services.errors import ChatError, MessageValidationError
from assist_chat.utils.security import Identity
from assist_chat.utils.websocket_manager import OPERATORS_ROOM, Connection, conv_room


logger = logging.getLogger(__name__)

# events answered with a same-named frame when the client sent no ack id
REPLY_EVENTS = {"getConversations", "newConversation", "getMessages", "markAsRead", "deleteConversation"}


def failure(code: str, msg: str) -> Dict[str, Any]:
    return {"ok": False, "success": False, "error": code, "msg": msg}


def conversation_id_from(data: Any) -> str:
    if isinstance(data, dict):
        data = data.get("conversationId") or data.get("id") or data.get("room")
    if not data or not isinstance(data, str):
        raise MessageValidationError("Invalid conversation id")
    # accept a room name as well as a bare id
    return data[len("conv:"):] if data.startswith("conv:") else data


class RealtimeSession:
    """Event handlers for one authenticated connection.

    Frames are ``{"event": str, "data": any, "ack": optional id}``. A frame
    carrying ``ack`` always gets exactly one ``{"event": "ack", "ack": id,
    "data": result}`` reply; failures never close the socket.
    """

    def __init__(self, context: ServerContext, connection: Connection, identity: Identity) -> None:
        self.context = context
        self.connection = connection
        self.identity = identity
        self.chat = context.chat_service()
        self._handlers: Dict[str, Callable[[Any], Awaitable[Optional[Dict[str, Any]]]]] = {
            "conversation:join": self.on_join,
            "join:conv": self.on_join,
            "join": self.on_join,
            "conversation:leave": self.on_leave,
            "leave:conv": self.on_leave,
            "leave": self.on_leave,
            "typing": self.on_typing,
            "getConversations": self.on_get_conversations,
            "newConversation": self.on_new_conversation,
            "getMessages": self.on_get_messages,
            "message:send": self.on_send,
            "newMessage": self.on_send,
            "markAsRead": self.on_mark_read,
            "deleteConversation": self.on_delete_conversation,
        }

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    async def on_connect(self) -> None:
        settings = self.context.settings
        connections = self.context.connections
        if settings.operators_room_for_all or self.identity.role == settings.operator_role:
            await connections.join(self.connection, OPERATORS_ROOM)
        try:
            conversation_ids = await self.context.conversations.ids_for_user(self.user_id)
        except PyMongoError as exc:
            logger.warning("Auto-join for %s failed: %s", self.user_id, exc)
            return
        for cid in conversation_ids:
            await connections.join(self.connection, conv_room(cid))
        logger.debug("User %s joined %d conversation rooms", self.user_id, len(conversation_ids))

    async def dispatch(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            frame = None
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.connection.send("error", failure("invalid_frame", "Expected {event, data, ack}"))
            return

        event = frame["event"]
        ack = frame.get("ack")
        handler = self._handlers.get(event)
        if handler is None:
            response = failure("unknown_event", f"Unknown event {event}")
        else:
            response = await self._run(event, handler, frame.get("data"))

        if response is None:
            return
        if ack is not None:
            await self.connection.send_ack(ack, response)
        elif event in REPLY_EVENTS or not response.get("success", True):
            await self.connection.send(event, response)

    async def _run(self, event: str, handler, data: Any) -> Optional[Dict[str, Any]]:
        try:
            return await asyncio.wait_for(handler(data), timeout=self.context.settings.realtime_op_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s from %s timed out", event, self.user_id)
            return failure("timeout", "Operation timed out")
        except ChatError as exc:
            return failure(exc.code, str(exc))
        except PyMongoError as exc:
            logger.warning("%s from %s failed on the store: %s", event, self.user_id, exc)
            return failure("store_unavailable", "Store unavailable")
        except Exception:
            logger.exception("%s from %s failed", event, self.user_id)
            return failure("internal_error", "Operation failed")

    async def on_join(self, data: Any) -> Dict[str, Any]:
        cid = conversation_id_from(data)
        await self.chat.get_conversation_for(cid, self.user_id)
        await self.context.connections.join(self.connection, conv_room(cid))
        return {"ok": True, "success": True, "conversationId": cid}

    async def on_leave(self, data: Any) -> Dict[str, Any]:
        cid = conversation_id_from(data)
        await self.context.connections.leave(self.connection, conv_room(cid))
        return {"ok": True, "success": True, "conversationId": cid}

    async def on_typing(self, data: Any) -> None:
        if not isinstance(data, dict) or not data.get("conversationId"):
            return None
        room = conv_room(str(data["conversationId"]))
        if room not in self.connection.rooms:
            return None
        await self.context.connections.emit(
            room,
            "typing",
            {"conversationId": str(data["conversationId"]), "userId": self.user_id, "isTyping": bool(data.get("isTyping"))},
            exclude_connection=self.connection.id,
        )
        return None

    async def on_get_conversations(self, data: Any) -> Dict[str, Any]:
        items = await self.chat.list_conversations(self.user_id)
        return {"success": True, "data": items}

    async def on_new_conversation(self, data: Any) -> Dict[str, Any]:
        data = data if isinstance(data, dict) else {}
        participants = data.get("participants")
        if participants is not None and not isinstance(participants, list):
            raise MessageValidationError("participants must be a list")
        conversation, created = await self.chat.create_conversation(
            self.user_id, participants or [], title=data.get("name")
        )
        await self.context.connections.join(self.connection, conv_room(conversation["id"]))
        return {"success": True, "data": {**conversation, "isNew": created}}

    async def on_get_messages(self, data: Any) -> Dict[str, Any]:
        cid = conversation_id_from(data)
        messages = await self.chat.get_history(cid, self.user_id, limit=self.context.settings.history_limit)
        return {"success": True, "data": messages}

    async def on_send(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise MessageValidationError("Invalid message payload")
        temp_id = data.get("tempId")
        message = await self.chat.send_message(
            conversation_id_from(data.get("conversationId")),
            self.user_id,
            data.get("text", data.get("content")),
            attachment=data.get("attachment"),
        )
        if temp_id:
            await self.connection.send(
                "message:delivered", {"tempId": temp_id, "id": message["id"], "createdAt": message["createdAt"]}
            )
        return {
            "ok": True,
            "success": True,
            "data": message,
            "id": message["id"],
            "createdAt": message["createdAt"],
            "tempId": temp_id,
        }

    async def on_mark_read(self, data: Any) -> Dict[str, Any]:
        await self.chat.mark_read(conversation_id_from(data), self.user_id)
        return {"success": True}

    async def on_delete_conversation(self, data: Any) -> Dict[str, Any]:
        await self.chat.delete_conversation(conversation_id_from(data), self.user_id)
        return {"success": True}
