from datetime import datetime, timezone
from typing import Iterable, List, Literal, Optional

from edulink_chat.schemas.chat import ConversationSummary


ComposerAction = Literal["send", "newline", "type"]


def format_timestamp(ts: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Clock time under 24h, "Yesterday" under 48h, otherwise the calendar date."""
    if ts is None:
        return ""
    now = now or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    hours = (now - ts).total_seconds() / 3600
    if hours < 24:
        return ts.strftime("%I:%M %p")
    if hours < 48:
        return "Yesterday"
    return f"{ts.strftime('%b')} {ts.day}"


def filter_conversations(conversations: Iterable[ConversationSummary], query: str) -> List[ConversationSummary]:
    needle = (query or "").strip().lower()
    if not needle:
        return list(conversations)
    return [c for c in conversations if needle in (c.participant.name or "").lower()]


def composer_action(key: str, shift: bool = False) -> ComposerAction:
    # Enter sends, Shift+Enter keeps typing on a new line
    if key == "Enter":
        return "newline" if shift else "send"
    return "type"
