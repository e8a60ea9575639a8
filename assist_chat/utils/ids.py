from bson import ObjectId
from bson.errors import InvalidId

from assist_chat.services.errors import MessageValidationError


def to_object_id(value, what: str = "conversation") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise MessageValidationError(f"Invalid {what} id") from None
