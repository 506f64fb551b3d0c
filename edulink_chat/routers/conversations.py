from typing import List

from fastapi import APIRouter, Depends

from edulink_chat.config import settings
from edulink_chat.database.connection import mongo_db_dependency
from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.enrollment_repository import EnrollmentRepository
from edulink_chat.repositories.message_repository import MessageRepository
from edulink_chat.repositories.user_repository import UserRepository
from edulink_chat.schemas.chat import (
    ConversationPublic,
    ConversationSummary,
    EnsureConversationRequest,
    MessagePublic,
    SendMessageRequest,
)
from edulink_chat.schemas.user import CurrentUser
from edulink_chat.services.chat_service import ChatService
from edulink_chat.services.conversation_service import ConversationService
from edulink_chat.services.read_tracker import ReadTracker
from edulink_chat.utils.dependencies import get_current_user
from edulink_chat.utils.realtime_bus import get_bus


router = APIRouter(prefix="/conversations", tags=["chat"])


def get_conversation_service(db = Depends(mongo_db_dependency)) -> ConversationService:
    return ConversationService(
        ConversationRepository(db),
        MessageRepository(db),
        UserRepository(db),
        EnrollmentRepository(db),
    )


async def get_chat_service(db = Depends(mongo_db_dependency)) -> ChatService:
    return ChatService(MessageRepository(db), ConversationRepository(db), await get_bus(), settings.message_max_length)


async def get_read_tracker(db = Depends(mongo_db_dependency)) -> ReadTracker:
    return ReadTracker(MessageRepository(db), ConversationRepository(db), await get_bus())


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(seed: bool = True, current_user: CurrentUser = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    if seed:
        return await service.load_directory(current_user.id)
    return await service.list_conversations(current_user.id)


@router.post("", response_model=ConversationPublic)
async def ensure_conversation(body: EnsureConversationRequest, current_user: CurrentUser = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.ensure_conversation(current_user.id, body.participant_id)


@router.get("/{conversation_id}/messages", response_model=List[MessagePublic])
async def list_messages(conversation_id: str, current_user: CurrentUser = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.get_history(conversation_id, current_user.id)


@router.post("/{conversation_id}/messages", response_model=MessagePublic, status_code=201)
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    current_user: CurrentUser = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
    service: ChatService = Depends(get_chat_service),
):
    # the receiver is derived from the conversation, never taken from the client
    conversation = await conversations.get_conversation(conversation_id)
    receiver_id = conversation.other_participant(current_user.id)
    return await service.send_message(conversation_id, current_user.id, receiver_id, body.content, body.client_message_id)


@router.post("/{conversation_id}/read")
async def mark_conversation_read(conversation_id: str, current_user: CurrentUser = Depends(get_current_user), tracker: ReadTracker = Depends(get_read_tracker)):
    count = await tracker.mark_conversation_read(conversation_id, current_user.id)
    return {"updated": count}
