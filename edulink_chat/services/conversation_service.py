import asyncio
import logging
from typing import Dict, List, Optional

from edulink_chat.errors import MessagingError, NotFoundError, ValidationError
from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.enrollment_repository import EnrollmentRepository
from edulink_chat.repositories.message_repository import MessageRepository
from edulink_chat.repositories.user_repository import UserRepository
from edulink_chat.schemas.chat import EMPTY_CONVERSATION_PREVIEW, ConversationPublic, ConversationSummary
from edulink_chat.schemas.user import Participant


logger = logging.getLogger(__name__)


def _participant(user_id: str, profile: Optional[Dict]) -> Participant:
    if not profile:
        return Participant(id=user_id)
    return Participant(
        id=user_id,
        name=profile.get("full_name"),
        email=profile.get("email"),
        avatar_url=profile.get("avatar_url"),
        role=profile.get("role"),
    )


class ConversationService:
    """Two-party conversation directory: discovery, dedup and enrollment seeding."""

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        user_repo: UserRepository,
        enrollment_repo: EnrollmentRepository,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._user_repo = user_repo
        self._enrollment_repo = enrollment_repo

    async def get_conversation(self, conversation_id: str) -> ConversationPublic:
        doc = await self._conversation_repo.get_by_id(conversation_id)
        if not doc:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return ConversationPublic(**doc)

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        conversations = [ConversationPublic(**doc) for doc in await self._conversation_repo.list_for_user(user_id)]
        if not conversations:
            return []
        other_ids = [c.other_participant(user_id) for c in conversations]
        profiles = await self._user_repo.get_users_by_ids(other_ids)
        # unread counts are recounted on every listing, never tracked incrementally
        counts = await asyncio.gather(
            *(self._message_repo.count_unread(c.id, user_id) for c in conversations)
        )
        return [
            ConversationSummary(
                id=c.id,
                participant=_participant(other_id, profiles.get(other_id)),
                last_message=c.last_message or EMPTY_CONVERSATION_PREVIEW,
                last_message_at=c.last_message_at,
                unread=count,
            )
            for c, other_id, count in zip(conversations, other_ids, counts)
        ]

    async def ensure_conversation(self, user_a: str, user_b: str) -> ConversationPublic:
        if user_a == user_b:
            raise ValidationError("Cannot start a conversation with yourself")
        existing = await self._conversation_repo.find_between(user_a, user_b)
        if existing:
            return ConversationPublic(**existing)
        doc, created = await self._conversation_repo.insert_if_absent(user_a, user_b)
        if created:
            logger.info(f"Created conversation {doc['id']} between {user_a} and {user_b}")
        return ConversationPublic(**doc)

    async def seed_from_enrollments(self, student_id: str) -> List[ConversationPublic]:
        instructor_ids = await self._enrollment_repo.instructor_ids_for_student(student_id)
        seeded = []
        for instructor_id in instructor_ids:
            if instructor_id == student_id:
                continue
            seeded.append(await self.ensure_conversation(student_id, instructor_id))
        logger.info(f"Seeded {len(seeded)} conversations for student {student_id}")
        return seeded

    async def is_student(self, user_id: str) -> bool:
        profile = await self._user_repo.get_user_by_id(user_id)
        return bool(profile) and profile.get("role") == "student"

    async def load_directory(self, user_id: str) -> List[ConversationSummary]:
        """List conversations, seeding a student's first directory from enrollments."""
        summaries = await self.list_conversations(user_id)
        if summaries or not await self.is_student(user_id):
            return summaries
        try:
            await self.seed_from_enrollments(user_id)
        except MessagingError as exc:
            logger.error(f"Seeding conversations for {user_id} failed: {exc.message}")
            return []
        return await self.list_conversations(user_id)
