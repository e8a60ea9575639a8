from fastapi import APIRouter, Depends

from assist_chat.services.context import ServerContext
from assist_chat.utils.dependencies import get_context, get_current_user


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(user_id: str, current_user: dict = Depends(get_current_user), ctx: ServerContext = Depends(get_context)):
    """Online if the user has a live socket here, or a fresh heartbeat on the bus."""
    online = ctx.connections.is_online(user_id)
    if not online and ctx.bus.enabled:
        online = await ctx.bus.is_online(user_id)
    return {"user_id": user_id, "online": bool(online)}
