import logging
from typing import NamedTuple, Optional, Tuple

from pymongo.errors import PyMongoError

from assist_chat.repositories.assist_request_repository import AssistRequestRepository
from assist_chat.repositories.conversation_meta_repository import ConversationMetaRepository
from assist_chat.repositories.conversation_repository import ConversationRepository


logger = logging.getLogger(__name__)

NEW_CONVERSATION = "new"


class Resolution(NamedTuple):
    conversation_id: Optional[str]
    created: bool = False
    participants: Tuple[str, ...] = ()


class ConversationResolver:
    """Maps an explicit id, or a peer / originating request, to one conversation."""

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        meta_repo: ConversationMetaRepository,
        assist_repo: AssistRequestRepository,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._meta_repo = meta_repo
        self._assist_repo = assist_repo

    async def resolve(
        self,
        caller_id: str,
        explicit_id: Optional[str] = None,
        peer_user_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Resolution:
        if explicit_id and explicit_id != NEW_CONVERSATION:
            return Resolution(str(explicit_id))

        if request_id and not peer_user_id:
            try:
                peer_user_id = await self._assist_repo.get_owner_id(request_id)
            except PyMongoError as exc:
                logger.warning("Owner lookup for request %s failed: %s", request_id, exc)

        if not peer_user_id or str(peer_user_id) == str(caller_id):
            return Resolution(None)

        conv, created = await self._conversation_repo.find_or_create(
            [str(caller_id), str(peer_user_id)], request_id=request_id or None
        )
        if created:
            try:
                await self._meta_repo.ensure(conv["_id"], conv["participants"])
            except PyMongoError as exc:
                logger.warning("Meta init for conversation %s failed: %s", conv["_id"], exc)
        return Resolution(str(conv["_id"]), created, tuple(conv["participants"]))
