from datetime import datetime
from typing import Any, Optional, TypedDict

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: Any
    sender_id: str
    content: str
    # URL of an uploaded image
    attachment: Optional[str]
    created_at: datetime


class MessageRecord(BaseModel):
    """Validated shape of a message before it is written."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    conversation_id: ObjectId
    sender_id: str = Field(min_length=1)
    content: str = ""
    attachment: Optional[str] = None
    created_at: datetime
