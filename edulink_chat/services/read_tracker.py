import logging
from typing import Optional

from edulink_chat.errors import NotFoundError, PermissionDeniedError
from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.message_repository import MessageRepository
from edulink_chat.schemas.chat import ConversationPublic, MessagePublic
from edulink_chat.utils.realtime_bus import ChangeFeed, publish_message_change


logger = logging.getLogger(__name__)


class ReadTracker:
    """Flips read flags. A message only ever moves unread -> read."""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        bus: Optional[ChangeFeed] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._bus = bus

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> int:
        doc = await self._conversation_repo.get_by_id(conversation_id)
        if not doc:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if not ConversationPublic(**doc).has_participant(user_id):
            raise PermissionDeniedError("Not a participant of this conversation")

        flipped = await self._message_repo.mark_conversation_read(conversation_id, user_id)
        for row in flipped:
            await publish_message_change(self._bus, "UPDATE", MessagePublic(**row))
        if flipped:
            logger.debug(f"Marked {len(flipped)} messages read in {conversation_id} for {user_id}")
        return len(flipped)

    async def mark_message_read(self, message_id: str, user_id: Optional[str] = None) -> Optional[MessagePublic]:
        """Flip one message; returns the updated row, or None if it was already read."""
        if user_id is not None:
            existing = await self._message_repo.get_by_id(message_id)
            if not existing:
                raise NotFoundError(f"Message {message_id} not found")
            if existing["receiver_id"] != user_id:
                raise PermissionDeniedError("Only the receiver can mark a message read")

        row = await self._message_repo.mark_message_read(message_id)
        if row is None:
            return None
        message = MessagePublic(**row)
        await publish_message_change(self._bus, "UPDATE", message)
        return message
