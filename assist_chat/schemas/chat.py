from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EnsureConversationRequest(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    peer_user_id: Optional[str] = Field(default=None, alias="peerUserId")
    request_id: Optional[str] = Field(default=None, alias="requestId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


class EnsureConversationResponse(BaseModel):

    id: Optional[str] = None


class SendMessageRequest(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    attachment: Optional[str] = None
    temp_id: Optional[str] = Field(default=None, alias="tempId")


class MessageOut(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    id: str
    conversation_id: str = Field(alias="conversationId")
    sender_id: str = Field(alias="from")
    text: str
    attachment: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    # echoed from the request so the client can match its optimistic copy
    temp_id: Optional[str] = Field(default=None, alias="tempId")


class ConversationOut(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    id: str
    participants: List[str]
    request_id: Optional[str] = Field(default=None, alias="requestId")
    title: Optional[str] = None
    last_message: Optional[str] = Field(default=None, alias="lastMessage")
    last_message_at: Optional[str] = Field(default=None, alias="lastMessageAt")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    unread: int = 0


class MessagePage(BaseModel):

    items: List[MessageOut]
    # pass back as ?before=&before_id= to fetch the previous page
    next_before: Optional[str] = None
    next_before_id: Optional[str] = None


class ConversationList(BaseModel):

    items: List[ConversationOut]
