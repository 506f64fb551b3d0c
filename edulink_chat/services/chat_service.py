import logging
from typing import List, Optional

from edulink_chat.errors import NotFoundError, PermissionDeniedError, ValidationError
from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.message_repository import MessageRepository
from edulink_chat.schemas.chat import ConversationPublic, MessagePublic
from edulink_chat.utils.realtime_bus import ChangeFeed, publish_message_change
from edulink_chat.utils.validation import normalize_content


logger = logging.getLogger(__name__)


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        bus: Optional[ChangeFeed] = None,
        max_length: Optional[int] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._bus = bus
        self._max_length = max_length

    async def _conversation_for(self, conversation_id: str, user_id: str) -> ConversationPublic:
        doc = await self._conversation_repo.get_by_id(conversation_id)
        if not doc:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        conversation = ConversationPublic(**doc)
        if not conversation.has_participant(user_id):
            raise PermissionDeniedError("Not a participant of this conversation")
        return conversation

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> MessagePublic:
        text = normalize_content(content, self._max_length)
        conversation = await self._conversation_for(conversation_id, sender_id)
        if receiver_id != conversation.other_participant(sender_id):
            raise ValidationError("Receiver is not the other participant of this conversation")

        saved = await self._message_repo.save_message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=text,
            client_message_id=client_message_id,
        )
        message = MessagePublic(**saved)
        await self._conversation_repo.update_summary(conversation_id, text, message.created_at)
        await publish_message_change(self._bus, "INSERT", message)
        return message

    async def get_history(self, conversation_id: str, user_id: str) -> List[MessagePublic]:
        await self._conversation_for(conversation_id, user_id)
        rows = await self._message_repo.get_messages_by_conversation(conversation_id)
        return [MessagePublic(**row) for row in rows]
