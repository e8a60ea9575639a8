import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assist_chat.config import Settings, get_settings
from assist_chat.database.connection import close_mongo_connection, connect_to_mongo, ensure_indexes
from assist_chat.routers.chat import router as chat_router
from assist_chat.routers.conversations import router as conversations_router
from assist_chat.routers.presence import router as presence_router
from assist_chat.services.context import ServerContext, build_context
from assist_chat.utils.logger import init_app_logger
from assist_chat.utils.notifications import get_push_providers
from assist_chat.utils.realtime_bus import ROOM_CHANNEL, get_bus


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    client = None
    if app.state.context is None:
        client = connect_to_mongo(settings)
        db = client[settings.database_name]
        await ensure_indexes(db)
        app.state.context = build_context(settings, db, get_bus(settings), get_push_providers(settings))
    ctx: ServerContext = app.state.context

    subscriber = sub_task = None
    if ctx.bus.enabled:
        subscriber = await ctx.bus.subscribe(ROOM_CHANNEL, ctx.connections.handle_bus_message)
        sub_task = asyncio.create_task(subscriber.run())
    if ctx.watcher is not None:
        ctx.watcher.start()
    logger.info("Realtime chat started (bus=%s, push=%s)", ctx.bus.enabled, sorted(ctx.push_providers))
    try:
        yield
    finally:
        if ctx.watcher is not None:
            await ctx.watcher.stop()
        await ctx.push.drain(timeout=settings.push_timeout)
        if subscriber is not None:
            await subscriber.cancel()
            sub_task.cancel()
        await ctx.bus.close()
        for provider in ctx.push_providers.values():
            await provider.aclose()
        if client is not None:
            close_mongo_connection(client)


def create_app(settings: Optional[Settings] = None, context: Optional[ServerContext] = None) -> FastAPI:
    settings = settings or (context.settings if context else get_settings())
    init_app_logger(settings)

    app = FastAPI(title="Assist Chat", lifespan=lifespan)
    app.state.settings = settings
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(presence_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
