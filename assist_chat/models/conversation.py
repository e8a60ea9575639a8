from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    participants: List[str]
    # sorted participant ids joined with ":"; unique together with request_id
    participants_hash: str
    request_id: Optional[str]
    title: Optional[str]
    last_message: Optional[str]
    last_message_at: Optional[datetime]
    created_at: datetime


def participants_hash(participants: List[str]) -> str:
    return ":".join(sorted({str(p) for p in participants}))
