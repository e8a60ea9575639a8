import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket

from assist_chat.utils.realtime_bus import ROOM_CHANNEL, NoopBus


logger = logging.getLogger(__name__)

OPERATORS_ROOM = "operators"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def conv_room(conversation_id: str) -> str:
    return f"conv:{conversation_id}"


class Connection:
    """One live WebSocket of an authenticated user."""

    def __init__(self, websocket: WebSocket, user_id: str, role: Optional[str] = None) -> None:
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.role = role
        self.rooms: Set[str] = set()
        # FIFO, keeps frames in emit order per connection
        self._send_lock = asyncio.Lock()

    async def send(self, event: str, data: Any) -> None:
        await self.send_frame({"event": event, "data": data})

    async def send_ack(self, ack: Any, data: Any) -> None:
        await self.send_frame({"event": "ack", "ack": ack, "data": data})

    async def send_frame(self, frame: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(frame, default=str))


class ConnectionManager:
    """Connection registry keyed by user id plus room membership.

    Emits go through the bus so every process delivers to its own connections;
    with the no-op bus delivery happens directly.
    """

    def __init__(self, bus=None, presence_ttl: int = 60) -> None:
        self.bus = bus or NoopBus()
        self.presence_ttl = presence_ttl
        self.connections: Dict[str, Connection] = {}
        self.user_connections: Dict[str, Set[str]] = {}
        self.rooms: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket, user_id: str, role: Optional[str] = None) -> Connection:
        await websocket.accept()
        conn = Connection(websocket, user_id, role)
        self.connections[conn.id] = conn
        self.user_connections.setdefault(user_id, set()).add(conn.id)
        try:
            await self.join(conn, user_room(user_id))
        except Exception:
            await self.disconnect(conn)
            raise
        return conn

    async def disconnect(self, conn: Connection) -> None:
        """Forget the connection; registry cleanup happens even when the bus fails."""
        try:
            for room in list(conn.rooms):
                try:
                    await self.leave(conn, room)
                except Exception as exc:
                    logger.warning("Leaving %s for connection %s failed: %s", room, conn.id, exc)
                    self._drop_member(conn, room)
        finally:
            self.connections.pop(conn.id, None)
            ids = self.user_connections.get(conn.user_id)
            if ids is not None:
                ids.discard(conn.id)
                if not ids:
                    del self.user_connections[conn.user_id]

    async def join(self, conn: Connection, room: str) -> bool:
        if room in conn.rooms:
            return False
        conn.rooms.add(room)
        self.rooms.setdefault(room, set()).add(conn.id)
        if room.startswith("conv:"):
            await self.bus.track_room(conn.user_id, room, 1, self.presence_ttl)
        return True

    async def leave(self, conn: Connection, room: str) -> bool:
        if room not in conn.rooms:
            return False
        self._drop_member(conn, room)
        if room.startswith("conv:"):
            await self.bus.track_room(conn.user_id, room, -1, self.presence_ttl)
        return True

    def _drop_member(self, conn: Connection, room: str) -> None:
        conn.rooms.discard(room)
        members = self.rooms.get(room)
        if members is not None:
            members.discard(conn.id)
            if not members:
                del self.rooms[room]

    async def close_room(self, room: str) -> None:
        for conn_id in list(self.rooms.get(room, ())):
            conn = self.connections.get(conn_id)
            if conn is not None:
                await self.leave(conn, room)

    async def emit(
        self,
        room: str,
        event: str,
        data: Any,
        exclude_connection: Optional[str] = None,
        exclude_users: Iterable[str] = (),
        close_room: bool = False,
    ) -> None:
        envelope = {
            "room": room,
            "event": event,
            "data": data,
            "exclude_connection": exclude_connection,
            "exclude_users": list(exclude_users),
            "close_room": close_room,
        }
        if self.bus.enabled and await self.bus.publish(ROOM_CHANNEL, json.dumps(envelope, default=str)):
            return
        # no bus, or the bus is down: this process still reaches its own sockets
        await self._deliver(envelope)

    async def emit_to_user(self, user_id: str, event: str, data: Any) -> None:
        await self.emit(user_room(user_id), event, data)

    async def handle_bus_message(self, raw: str) -> None:
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping malformed bus message")
            return
        await self._deliver(envelope)

    async def _deliver(self, envelope: Dict[str, Any]) -> None:
        excluded_users = set(envelope.get("exclude_users") or ())
        for conn_id in list(self.rooms.get(envelope["room"], ())):
            conn = self.connections.get(conn_id)
            if conn is None or conn.id == envelope.get("exclude_connection") or conn.user_id in excluded_users:
                continue
            try:
                await conn.send(envelope["event"], envelope["data"])
            except Exception as exc:
                # the receive loop of a dead socket cleans it up; keep delivering to the rest
                logger.warning("Delivery of %s to connection %s failed: %s", envelope["event"], conn.id, exc)
        if envelope.get("close_room"):
            await self.close_room(envelope["room"])

    def local_users_in_room(self, room: str) -> Set[str]:
        users = set()
        for conn_id in self.rooms.get(room, ()):
            conn = self.connections.get(conn_id)
            if conn is not None:
                users.add(conn.user_id)
        return users

    async def present_users(self, room: str, candidates: Iterable[str]) -> Set[str]:
        candidates = set(candidates)
        present = self.local_users_in_room(room) & candidates
        if self.bus.enabled and candidates - present:
            present |= await self.bus.users_in_room(room, candidates - present)
        return present

    def is_online(self, user_id: str) -> bool:
        return bool(self.user_connections.get(user_id))
