from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from edulink_chat.schemas.user import Participant


EMPTY_CONVERSATION_PREVIEW = "Start a conversation"

ChangeType = Literal["INSERT", "UPDATE"]


class MessagePublic(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    read: bool = False
    created_at: datetime
    client_message_id: Optional[str] = None
    # set on optimistic entries that the store has not acknowledged yet
    pending: bool = False


class ConversationPublic(BaseModel):

    id: str
    participant_1_id: str
    participant_2_id: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def other_participant(self, user_id: str) -> str:
        return self.participant_2_id if self.participant_1_id == user_id else self.participant_1_id

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_1_id, self.participant_2_id)


class ConversationSummary(BaseModel):

    id: str
    participant: Participant
    last_message: str = EMPTY_CONVERSATION_PREVIEW
    last_message_at: Optional[datetime] = None
    unread: int = 0


class ChangeEvent(BaseModel):

    type: ChangeType
    table: str = "messages"
    row: MessagePublic


class SendMessageRequest(BaseModel):

    content: str
    client_message_id: Optional[str] = Field(default=None, max_length=64)


class EnsureConversationRequest(BaseModel):

    participant_id: str
