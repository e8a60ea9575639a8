from typing import Literal, TypedDict


PushPlatform = Literal["expo", "fcm"]


class DeviceDocument(TypedDict, total=False):
    _id: str
    user_id: str
    platform: PushPlatform
    token: str
    last_seen_at: str
