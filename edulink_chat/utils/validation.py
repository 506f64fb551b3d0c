from edulink_chat.config import settings
from edulink_chat.errors import ValidationError


def normalize_content(content: str | None, max_length: int | None = None) -> str:
    """Trim message content and reject it if empty or too long."""
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    limit = max_length or settings.message_max_length
    if len(text) > limit:
        raise ValidationError(f"Message content exceeds {limit} characters")
    return text
