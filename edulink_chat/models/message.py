from datetime import datetime
from typing import Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    # flips false -> true once, never back
    read: bool
    created_at: datetime
    # sender's temporary id, echoed back for reconciliation
    client_message_id: Optional[str]
