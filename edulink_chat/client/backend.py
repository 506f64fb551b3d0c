from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.enrollment_repository import EnrollmentRepository
from edulink_chat.repositories.message_repository import MessageRepository
from edulink_chat.repositories.user_repository import UserRepository
from edulink_chat.schemas.chat import ConversationPublic, ConversationSummary, MessagePublic
from edulink_chat.services.chat_service import ChatService
from edulink_chat.services.conversation_service import ConversationService
from edulink_chat.services.read_tracker import ReadTracker
from edulink_chat.utils.realtime_bus import ChangeFeed


class MessagingBackend:
    """Round trips a chat session needs. Every call is a suspension point."""

    async def load_directory(self, user_id: str) -> List[ConversationSummary]:
        raise NotImplementedError

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        raise NotImplementedError

    async def ensure_conversation(self, user_a: str, user_b: str) -> ConversationPublic:
        raise NotImplementedError

    async def fetch_messages(self, conversation_id: str, user_id: str) -> List[MessagePublic]:
        raise NotImplementedError

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> MessagePublic:
        raise NotImplementedError

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> int:
        raise NotImplementedError

    async def mark_message_read(self, message_id: str, user_id: str) -> Optional[MessagePublic]:
        raise NotImplementedError


class LocalBackend(MessagingBackend):
    """Calls the service layer in-process."""

    def __init__(self, conversations: ConversationService, chat: ChatService, reads: ReadTracker) -> None:
        self._conversations = conversations
        self._chat = chat
        self._reads = reads

    @classmethod
    def from_database(cls, db: AsyncIOMotorDatabase, bus: Optional[ChangeFeed] = None, max_length: Optional[int] = None) -> "LocalBackend":
        conversation_repo = ConversationRepository(db)
        message_repo = MessageRepository(db)
        return cls(
            ConversationService(conversation_repo, message_repo, UserRepository(db), EnrollmentRepository(db)),
            ChatService(message_repo, conversation_repo, bus, max_length),
            ReadTracker(message_repo, conversation_repo, bus),
        )

    async def load_directory(self, user_id: str) -> List[ConversationSummary]:
        return await self._conversations.load_directory(user_id)

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        return await self._conversations.list_conversations(user_id)

    async def ensure_conversation(self, user_a: str, user_b: str) -> ConversationPublic:
        return await self._conversations.ensure_conversation(user_a, user_b)

    async def fetch_messages(self, conversation_id: str, user_id: str) -> List[MessagePublic]:
        return await self._chat.get_history(conversation_id, user_id)

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> MessagePublic:
        return await self._chat.send_message(conversation_id, sender_id, receiver_id, content, client_message_id)

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> int:
        return await self._reads.mark_conversation_read(conversation_id, user_id)

    async def mark_message_read(self, message_id: str, user_id: str) -> Optional[MessagePublic]:
        return await self._reads.mark_message_read(message_id, user_id)
