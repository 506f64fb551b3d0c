from datetime import datetime
from typing import Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    participant_1_id: str
    participant_2_id: str
    # "<lower id>:<higher id>", unique per unordered pair
    pair_key: str
    last_message: Optional[str]
    last_message_at: datetime
    created_at: datetime


def pair_key(user_a: str, user_b: str) -> str:
    low, high = sorted([user_a, user_b])
    return f"{low}:{high}"
