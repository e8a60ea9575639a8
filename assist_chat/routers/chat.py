import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from assist_chat.services.realtime_service import RealtimeSession
from assist_chat.utils.security import AuthenticationError, bearer_from_header, identity_from_token


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    ctx = websocket.app.state.context
    # bearer token via ?token=... or the Authorization header
    token = websocket.query_params.get("token") or bearer_from_header(websocket.headers.get("authorization"))
    try:
        identity = identity_from_token(token, ctx.settings)
    except AuthenticationError as exc:
        logger.info("Refused realtime connection: %s", exc)
        await websocket.close(code=4401)
        return

    connections = ctx.connections
    conn = None
    heartbeat_task = None

    async def _presence_heartbeat():
        while True:
            try:
                await ctx.bus.set_presence(identity.user_id, ttl_seconds=ctx.settings.presence_ttl)
            except Exception as exc:
                logger.warning("Presence heartbeat for %s failed: %s", identity.user_id, exc)
            await asyncio.sleep(ctx.settings.presence_ttl / 2)

    try:
        conn = await connections.connect(websocket, identity.user_id, identity.role)
        session = RealtimeSession(ctx, conn, identity)
        if ctx.bus.enabled:
            heartbeat_task = asyncio.create_task(_presence_heartbeat())
        await session.on_connect()
        while True:
            raw = await websocket.receive_text()
            await session.dispatch(raw)
    except WebSocketDisconnect:
        pass
    finally:
        if heartbeat_task:
            heartbeat_task.cancel()
        if conn is not None:
            await connections.disconnect(conn)
