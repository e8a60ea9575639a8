"""Test doubles and token helpers shared by the test modules."""

import json
from typing import Any, Dict, List, Optional

import jwt

from assist_chat.config import Settings


TEST_SECRET = "test-secret"


def make_token(user_id: str, role: Optional[str] = None, secret: str = TEST_SECRET) -> str:
    payload: Dict[str, Any] = {"sub": user_id}
    if role:
        payload["role"] = role
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class FakeWebSocket:
    """Collects the JSON frames a connection sends."""

    def __init__(self) -> None:
        self.accepted = False
        self.sent: List[Dict[str, Any]] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        self.sent.append(json.loads(text))

    def events(self, name: str) -> List[Any]:
        return [frame["data"] for frame in self.sent if frame["event"] == name]

    def acks(self) -> Dict[Any, Any]:
        return {frame["ack"]: frame["data"] for frame in self.sent if frame["event"] == "ack"}


class RecordingPush:

    enabled = True
    platform = "expo"

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.unregistered: List[str] = []

    async def send(self, tokens, title, body, data=None):
        self.calls.append({"tokens": list(tokens), "title": title, "body": body, "data": data})
        return [t for t in tokens if t in self.unregistered]

    async def aclose(self) -> None:
        return


def make_settings(**overrides) -> Settings:
    values = {"jwt_secret": TEST_SECRET, "database_name": "test", "log_level": "WARNING"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def add_device(db, user_id: str, token: str, platform: str = "expo") -> None:
    await db["devices"].insert_one({"user_id": user_id, "platform": platform, "token": token})


def expo_token(name: str) -> str:
    return f"ExponentPushToken[{name}]"
