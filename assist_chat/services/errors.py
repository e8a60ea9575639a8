class ChatError(Exception):

    code = "chat_error"


class MessageValidationError(ChatError, ValueError):
    """Bad input shape; nothing was written."""

    code = "validation_error"


class ConversationNotFound(ChatError):
    """Conversation is missing or the caller is not one of its participants."""

    code = "conversation_not_found"

    def __init__(self, message: str = "Conversation not found") -> None:
        super().__init__(message)
