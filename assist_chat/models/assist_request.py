from datetime import datetime
from typing import Any, Dict, Literal, Optional, TypedDict


AssistStatus = Literal["pending", "accepted", "declined", "completed"]


class AssistRequestDocument(TypedDict, total=False):
    """Written by the assistance-request lifecycle; only read here."""

    _id: str
    userId: str
    status: AssistStatus
    clientName: Optional[str]
    placeName: Optional[str]
    address: Optional[str]
    location: Optional[Dict[str, Any]]
    vehicle: Optional[Dict[str, Any]]
    createdAt: datetime
