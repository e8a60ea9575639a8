"""Tests for push providers and the push bridge."""

import json

import httpx
import pytest

from assist_chat.repositories.device_repository import DeviceRepository
from assist_chat.services.push_service import PREVIEW_LIMIT, PushBridge, preview_body
from assist_chat.utils.notifications import ExpoPush, NoopPush, chunked, get_push_providers
from assist_chat.utils.websocket_manager import ConnectionManager
from helpers import RecordingPush, add_device, expo_token, make_settings


EXPO_URL = "https://exp.host/--/api/v2/push/send"


def expo_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def ok_tickets(request):
    messages = json.loads(request.content)
    return httpx.Response(200, json={"data": [{"status": "ok", "id": str(i)} for i in range(len(messages))]})


class TestExpoPush:

    async def test_sends_in_batches(self):
        batches = []

        def handler(request):
            batches.append(json.loads(request.content))
            return ok_tickets(request)

        push = ExpoPush(expo_client(handler), EXPO_URL, batch_size=99)
        tokens = [expo_token(f"t{i}") for i in range(150)]

        invalid = await push.send(tokens, "New message", "hi", {"type": "chat"})

        assert invalid == []
        assert [len(b) for b in batches] == [99, 51]
        assert batches[0][0] == {
            "to": tokens[0],
            "title": "New message",
            "body": "hi",
            "data": {"type": "chat"},
            "sound": "default",
            "channelId": "default",
            "priority": "high",
        }

    async def test_reports_unregistered_devices(self):
        def handler(request):
            messages = json.loads(request.content)
            tickets = []
            for message in messages:
                if message["to"] == expo_token("gone"):
                    tickets.append({"status": "error", "details": {"error": "DeviceNotRegistered"}})
                elif message["to"] == expo_token("limited"):
                    tickets.append({"status": "error", "details": {"error": "MessageRateExceeded"}})
                else:
                    tickets.append({"status": "ok"})
            return httpx.Response(200, json={"data": tickets})

        push = ExpoPush(expo_client(handler), EXPO_URL)

        invalid = await push.send([expo_token("ok"), expo_token("gone"), expo_token("limited")], "t", "b")

        assert invalid == [expo_token("gone")]

    async def test_skips_tokens_that_are_not_expo(self):
        seen = []

        def handler(request):
            seen.extend(m["to"] for m in json.loads(request.content))
            return ok_tickets(request)

        push = ExpoPush(expo_client(handler), EXPO_URL)

        await push.send(["fcm-token-123", expo_token("a"), "ExpoPushToken[b]"], "t", "b")

        assert seen == [expo_token("a"), "ExpoPushToken[b]"]

    async def test_failed_batch_is_logged_not_raised(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(502, text="bad gateway")
            return ok_tickets(request)

        push = ExpoPush(expo_client(handler), EXPO_URL, batch_size=1)

        invalid = await push.send([expo_token("a"), expo_token("b")], "t", "b")

        assert invalid == []
        assert len(calls) == 2

    async def test_access_token_is_sent(self):
        headers = []

        def handler(request):
            headers.append(request.headers.get("authorization"))
            return ok_tickets(request)

        push = ExpoPush(expo_client(handler), EXPO_URL, access_token="secret")

        await push.send([expo_token("a")], "t", "b")

        assert headers == ["Bearer secret"]


def test_chunked():
    assert chunked(["a", "b", "c"], 2) == [["a", "b"], ["c"]]
    assert chunked([], 2) == []


def test_providers_without_fcm_credentials():
    providers = get_push_providers(make_settings(), client=expo_client(ok_tickets))

    assert set(providers) == {"expo"}


async def test_disabled_push_uses_noop_provider():
    providers = get_push_providers(make_settings(push_enabled=False))

    assert isinstance(providers["expo"], NoopPush)
    assert await providers["expo"].send([expo_token("a")], "t", "b") == []


@pytest.mark.parametrize(
    "text, attachment, expected",
    [
        ("hello", None, "hello"),
        ("", "https://cdn/img.png", "Sent a photo"),
        ("caption", "https://cdn/img.png", "caption"),
        ("x" * (PREVIEW_LIMIT + 10), None, "x" * (PREVIEW_LIMIT - 3) + "…"),
        ("x" * PREVIEW_LIMIT, None, "x" * PREVIEW_LIMIT),
    ],
)
def test_preview_body(text, attachment, expected):
    assert preview_body(text, attachment) == expected


class TestPushBridge:

    @pytest.fixture
    def providers(self):
        expo, fcm = RecordingPush(), RecordingPush()
        fcm.platform = "fcm"
        return {"expo": expo, "fcm": fcm}

    @pytest.fixture
    def bridge(self, db, providers):
        return PushBridge(DeviceRepository(db), providers, ConnectionManager())

    async def test_groups_tokens_by_platform(self, db, bridge, providers):
        await add_device(db, "bob", expo_token("bob"))
        await add_device(db, "bob", "fcm-bob", platform="fcm")
        await add_device(db, "carol", expo_token("carol"))

        await bridge.notify_users(["bob", "carol"], "t", "b", {"k": "v"})

        assert providers["expo"].calls[0]["tokens"] == [expo_token("bob"), expo_token("carol")]
        assert providers["fcm"].calls[0]["tokens"] == ["fcm-bob"]

    async def test_prunes_invalid_tokens(self, db, bridge, providers):
        await add_device(db, "bob", "fcm-bob", platform="fcm")
        await add_device(db, "bob", expo_token("bob"))
        providers["fcm"].unregistered.append("fcm-bob")

        await bridge.notify_users(["bob"], "t", "b")

        remaining = [d["token"] async for d in db["devices"].find({})]
        assert remaining == [expo_token("bob")]

    async def test_provider_failure_is_swallowed(self, db, bridge, providers):
        await add_device(db, "bob", expo_token("bob"))

        async def explode(*args, **kwargs):
            raise RuntimeError("provider down")

        providers["expo"].send = explode

        await bridge.notify_users(["bob"], "t", "b")

    async def test_absent_excludes_author_and_room_members(self, db, bridge, providers):
        await add_device(db, "bob", expo_token("bob"))
        await add_device(db, "carol", expo_token("carol"))

        targets = await bridge.notify_absent("c1", "alice", "t", "b", participants=["alice", "bob", "carol"])

        assert targets == ["bob", "carol"]
        assert providers["expo"].calls[0]["data"] == {"type": "chat", "conversationId": "c1"}
