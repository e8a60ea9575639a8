from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from assist_chat.schemas.chat import (
    ConversationList,
    EnsureConversationRequest,
    EnsureConversationResponse,
    MessageOut,
    MessagePage,
    SendMessageRequest,
)
from assist_chat.services.chat_service import ChatService
from assist_chat.services.errors import ConversationNotFound, MessageValidationError
from assist_chat.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ConversationNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("", response_model=ConversationList)
async def list_conversations(limit: int = Query(50, ge=1, le=100), current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items = await service.list_conversations(current_user["_id"], limit=limit)
    return {"items": items}


@router.post("/ensure", response_model=EnsureConversationResponse)
async def ensure_conversation(body: EnsureConversationRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    conversation_id = await service.ensure_conversation(
        current_user["_id"],
        peer_user_id=body.peer_user_id,
        request_id=body.request_id,
        explicit_id=body.conversation_id,
    )
    return {"id": conversation_id}


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
    conversation_id: str,
    before: Optional[datetime] = None,
    before_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    try:
        items = await service.get_history(
            conversation_id, current_user["_id"], limit=limit, before=before, before_id=before_id
        )
    except (ConversationNotFound, MessageValidationError) as exc:
        raise _http_error(exc)
    if len(items) < limit:
        return {"items": items}
    # both halves of the cursor, so equal timestamps are not skipped
    return {"items": items, "next_before": items[0]["createdAt"], "next_before_id": items[0]["id"]}


@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: SendMessageRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        message = await service.send_message(conversation_id, current_user["_id"], body.text, attachment=body.attachment)
    except (ConversationNotFound, MessageValidationError) as exc:
        raise _http_error(exc)
    return {**message, "tempId": body.temp_id}


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        await service.mark_read(conversation_id, current_user["_id"])
    except (ConversationNotFound, MessageValidationError) as exc:
        raise _http_error(exc)
    return {"ok": True}


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        await service.delete_conversation(conversation_id, current_user["_id"])
    except (ConversationNotFound, MessageValidationError) as exc:
        raise _http_error(exc)
    return {"ok": True}
