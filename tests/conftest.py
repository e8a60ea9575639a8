"""Pytest fixtures: in-memory Mongo, server context, fake sockets, HTTP client."""

from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from assist_chat.database.connection import ensure_indexes
from assist_chat.main import create_app
from assist_chat.services.context import build_context
from assist_chat.services.realtime_service import RealtimeSession
from assist_chat.utils.security import Identity
from helpers import FakeWebSocket, RecordingPush, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["test"]
    await ensure_indexes(database)
    return database


@pytest.fixture
def push_provider():
    return RecordingPush()


@pytest.fixture
def context(settings, db, push_provider):
    return build_context(settings, db, push_providers={"expo": push_provider})


@pytest.fixture
def chat(context):
    return context.chat_service()


@pytest.fixture
def connect(context):
    """Open a fake realtime connection for a user, auto-joined like a real one."""

    async def _connect(user_id: str, role: Optional[str] = None):
        ws = FakeWebSocket()
        conn = await context.connections.connect(ws, user_id, role)
        session = RealtimeSession(context, conn, Identity(user_id=user_id, role=role))
        await session.on_connect()
        return session, ws

    return _connect


@pytest.fixture
async def client(context):
    app = create_app(context=context)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
