from edulink_chat.client.backend import LocalBackend, MessagingBackend
from edulink_chat.client.session import ChatSession
from edulink_chat.client.state import SessionState

__all__ = ["ChatSession", "LocalBackend", "MessagingBackend", "SessionState"]
