from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from assist_chat.services.chat_service import ChatService
from assist_chat.services.context import ServerContext
from assist_chat.utils.security import AuthenticationError, identity_from_token


bearer_scheme = HTTPBearer(auto_error=False)


def get_context(request: Request) -> ServerContext:
    return request.app.state.context


def get_chat_service(ctx: ServerContext = Depends(get_context)) -> ChatService:
    return ctx.chat_service()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ctx: ServerContext = Depends(get_context),
) -> dict:
    token = credentials.credentials if credentials else None
    try:
        identity = identity_from_token(token, ctx.settings)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"_id": identity.user_id, "role": identity.role}
