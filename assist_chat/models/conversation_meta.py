from datetime import datetime
from typing import Optional, TypedDict


class ConversationMetaDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    user_id: str
    # messages from others since last_read_at
    unread: int
    last_read_at: Optional[datetime]
