"""End-to-end socket tests through the ASGI app."""

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient
from starlette.websockets import WebSocketDisconnect

from assist_chat.main import create_app
from assist_chat.services.context import build_context
from helpers import RecordingPush, auth_header, make_settings, make_token


@pytest.fixture
def http():
    settings = make_settings()
    context = build_context(settings, AsyncMongoMockClient()["ws"], push_providers={"expo": RecordingPush()})
    # lifespan is not entered, so no change-stream watcher runs
    return TestClient(create_app(context=context))


def test_refuses_missing_or_bad_token(http):
    with pytest.raises(WebSocketDisconnect) as missing:
        with http.websocket_connect("/ws"):
            pass
    with pytest.raises(WebSocketDisconnect) as forged:
        with http.websocket_connect(f"/ws?token={make_token('alice', secret='other')}"):
            pass

    assert missing.value.code == 4401
    assert forged.value.code == 4401


def test_send_over_socket_reaches_peer(http):
    cid = http.post("/conversations/ensure", json={"peerUserId": "bob"}, headers=auth_header("alice")).json()["id"]

    with http.websocket_connect("/ws", headers=auth_header("bob")) as bob:
        # frames are handled after the auto-join, so this ack means bob is in the room
        bob.send_json({"event": "conversation:join", "data": cid, "ack": 0})
        assert bob.receive_json()["ack"] == 0
        with http.websocket_connect(f"/ws?token={make_token('alice')}") as alice:
            alice.send_json({"event": "message:send", "data": {"conversationId": cid, "text": "hi bob"}, "ack": 1})
            ack = alice.receive_json()

            assert ack["event"] == "ack"
            assert ack["ack"] == 1
            assert ack["data"]["success"] is True

            new = bob.receive_json()
            assert new["event"] == "message:new"
            assert new["data"]["text"] == "hi bob"
            assert new["data"]["id"] == ack["data"]["id"]


def test_join_ack(http):
    cid = http.post("/conversations/ensure", json={"peerUserId": "bob"}, headers=auth_header("alice")).json()["id"]

    with http.websocket_connect(f"/ws?token={make_token('alice')}") as alice:
        alice.send_json({"event": "conversation:join", "data": {"conversationId": cid}, "ack": "j1"})

        assert alice.receive_json() == {
            "event": "ack",
            "ack": "j1",
            "data": {"ok": True, "success": True, "conversationId": cid},
        }
