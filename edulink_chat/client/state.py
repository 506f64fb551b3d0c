"""In-memory view a single user session works against.

Pending sends are tracked by temporary id. A pending entry is settled
either by the send acknowledgement (temp id -> server row) or, when the
real-time echo wins the race, by the echo carrying the same
``client_message_id``. Whatever arrives second finds the server id
already present and only cleans up.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from edulink_chat.schemas.chat import ConversationSummary, MessagePublic


TEMP_ID_PREFIX = "temp-"


@dataclass
class PendingSend:
    temp_id: str
    # captured at send time; never re-read from the active conversation
    conversation_id: str
    content: str
    message: MessagePublic


@dataclass
class SessionState:
    user_id: str
    conversations: List[ConversationSummary] = field(default_factory=list)
    active_conversation_id: Optional[str] = None
    messages: List[MessagePublic] = field(default_factory=list)
    pending: Dict[str, PendingSend] = field(default_factory=dict)
    last_error: Optional[str] = None

    def find_conversation(self, conversation_id: str) -> Optional[ConversationSummary]:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def active_conversation(self) -> Optional[ConversationSummary]:
        if self.active_conversation_id is None:
            return None
        return self.find_conversation(self.active_conversation_id)

    def index_of(self, message_id: str) -> Optional[int]:
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                return i
        return None

    def is_relevant(self, row: MessagePublic) -> bool:
        return self.user_id in (row.sender_id, row.receiver_id)

    def set_conversations(self, items: Iterable[ConversationSummary]) -> None:
        self.conversations = list(items)

    def zero_unread(self, conversation_id: str) -> None:
        conversation = self.find_conversation(conversation_id)
        if conversation is not None:
            conversation.unread = 0

    def note_sent(self, row: MessagePublic) -> None:
        conversation = self.find_conversation(row.conversation_id)
        if conversation is not None:
            conversation.last_message = row.content
            conversation.last_message_at = row.created_at

    def switch_to(self, conversation_id: str) -> None:
        if self.active_conversation_id != conversation_id:
            self.active_conversation_id = conversation_id
            self.messages = []

    def load_history(self, conversation_id: str, history: List[MessagePublic]) -> None:
        """Replace the open thread with a freshly fetched history.

        Rows delivered by the event bus while the fetch was in flight and
        sends still pending for this conversation are kept after it.
        """
        if self.active_conversation_id != conversation_id:
            return
        merged = list(history)
        known = {m.id for m in merged}
        echoed = {m.client_message_id for m in merged if m.client_message_id}
        for message in self.messages:
            if message.pending or message.id in known:
                continue
            merged.append(message)
            known.add(message.id)
            if message.client_message_id:
                echoed.add(message.client_message_id)
        for pending in self.pending.values():
            if pending.conversation_id == conversation_id and pending.temp_id not in echoed:
                merged.append(pending.message)
        self.messages = merged

    def add_pending(self, pending: PendingSend) -> None:
        self.pending[pending.temp_id] = pending
        if pending.conversation_id == self.active_conversation_id:
            self.messages.append(pending.message)

    def find_pending(self, conversation_id: str, content: str) -> Optional[PendingSend]:
        for pending in self.pending.values():
            if pending.conversation_id == conversation_id and pending.content == content:
                return pending
        return None

    def confirm_pending(self, temp_id: str, row: MessagePublic) -> None:
        self.pending.pop(temp_id, None)
        if row.conversation_id != self.active_conversation_id:
            # the thread was switched away; its next history load has the row
            return
        temp_index = self.index_of(temp_id)
        server_index = self.index_of(row.id)
        if temp_index is not None and server_index is None:
            self.messages[temp_index] = row
        elif temp_index is not None:
            del self.messages[temp_index]
        elif server_index is None:
            self.messages.append(row)

    def discard_pending(self, temp_id: str) -> None:
        self.pending.pop(temp_id, None)
        index = self.index_of(temp_id)
        if index is not None:
            del self.messages[index]

    def apply_insert(self, row: MessagePublic) -> bool:
        if row.conversation_id != self.active_conversation_id:
            return False
        if self.index_of(row.id) is not None:
            return False
        temp_id = row.client_message_id
        if temp_id and temp_id in self.pending:
            temp_index = self.index_of(temp_id)
            if temp_index is not None:
                self.messages[temp_index] = row
                return True
        self.messages.append(row)
        return True

    def apply_update(self, row: MessagePublic) -> bool:
        if row.conversation_id != self.active_conversation_id:
            return False
        index = self.index_of(row.id)
        if index is None:
            return False
        current = self.messages[index]
        # read never goes back to unread, whatever order updates arrive in
        self.messages[index] = row.model_copy(update={"read": current.read or row.read})
        return True
