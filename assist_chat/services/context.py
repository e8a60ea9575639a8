from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from assist_chat.config import Settings
from assist_chat.repositories.assist_request_repository import AssistRequestRepository
from assist_chat.repositories.conversation_meta_repository import ConversationMetaRepository
from assist_chat.repositories.conversation_repository import ConversationRepository
from assist_chat.repositories.device_repository import DeviceRepository
from assist_chat.repositories.message_repository import MessageRepository
from assist_chat.services.assist_watcher import AssistRequestWatcher
from assist_chat.services.chat_service import ChatService
from assist_chat.services.conversation_resolver import ConversationResolver
from assist_chat.services.push_service import PushBridge
from assist_chat.utils.realtime_bus import NoopBus
from assist_chat.utils.websocket_manager import ConnectionManager


@dataclass
class ServerContext:
    """Everything a request or socket handler needs, built once per process."""

    settings: Settings
    db: AsyncIOMotorDatabase
    connections: ConnectionManager
    push: PushBridge
    bus: Any = field(default_factory=NoopBus)
    push_providers: Dict[str, Any] = field(default_factory=dict)
    watcher: Optional[AssistRequestWatcher] = None

    @property
    def conversations(self) -> ConversationRepository:
        return ConversationRepository(self.db)

    @property
    def assist_requests(self) -> AssistRequestRepository:
        return AssistRequestRepository(self.db, self.settings.assist_collection, self.settings.operators_collection)

    def chat_service(self) -> ChatService:
        conversation_repo = self.conversations
        meta_repo = ConversationMetaRepository(self.db)
        resolver = ConversationResolver(conversation_repo, meta_repo, self.assist_requests)
        return ChatService(
            conversation_repo,
            MessageRepository(self.db),
            meta_repo,
            resolver,
            self.connections,
            self.push,
        )


def build_context(
    settings: Settings,
    db: AsyncIOMotorDatabase,
    bus=None,
    push_providers: Optional[Dict[str, Any]] = None,
) -> ServerContext:
    bus = bus or NoopBus()
    providers = push_providers or {}
    connections = ConnectionManager(bus, presence_ttl=settings.presence_ttl)
    push = PushBridge(DeviceRepository(db), providers, connections, ConversationRepository(db))
    context = ServerContext(
        settings=settings,
        db=db,
        connections=connections,
        push=push,
        bus=bus,
        push_providers=providers,
    )
    context.watcher = AssistRequestWatcher(context.assist_requests, connections, push)
    return context
