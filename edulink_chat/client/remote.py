"""HTTP backend and WebSocket change feed for sessions running outside the server process."""
import logging
from typing import Any, Iterable, List, Optional
from urllib.parse import urlencode

import httpx
import websockets
from pydantic import ValidationError as PydanticValidationError
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from edulink_chat.client.backend import MessagingBackend
from edulink_chat.errors import PersistenceError, SubscriptionError, error_for_status
from edulink_chat.schemas.chat import ChangeEvent, ConversationPublic, ConversationSummary, MessagePublic
from edulink_chat.utils.realtime_bus import ChangeHandler


logger = logging.getLogger(__name__)


class HttpBackend(MessagingBackend):
    """Talks to the chat API. The acting user is whoever the bearer token names."""

    def __init__(self, base_url: str, token: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise PersistenceError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            # our handler answers {"error": ...}; FastAPI itself answers {"detail": ...}
            message = body.get("error") or body.get("detail") or resp.text
            if not isinstance(message, str):
                message = str(message)
            raise error_for_status(resp.status_code, message or f"HTTP {resp.status_code}")
        return resp.json()

    async def load_directory(self, user_id: str) -> List[ConversationSummary]:
        data = await self._request("GET", "/conversations", params={"seed": "true"})
        return [ConversationSummary(**item) for item in data]

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        data = await self._request("GET", "/conversations", params={"seed": "false"})
        return [ConversationSummary(**item) for item in data]

    async def ensure_conversation(self, user_a: str, user_b: str) -> ConversationPublic:
        data = await self._request("POST", "/conversations", json={"participant_id": user_b})
        return ConversationPublic(**data)

    async def fetch_messages(self, conversation_id: str, user_id: str) -> List[MessagePublic]:
        data = await self._request("GET", f"/conversations/{conversation_id}/messages")
        return [MessagePublic(**item) for item in data]

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> MessagePublic:
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            json={"content": content, "client_message_id": client_message_id},
        )
        return MessagePublic(**data)

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> int:
        data = await self._request("POST", f"/conversations/{conversation_id}/read")
        return int(data.get("updated", 0))

    async def mark_message_read(self, message_id: str, user_id: str) -> Optional[MessagePublic]:
        data = await self._request("POST", f"/messages/{message_id}/read")
        message = data.get("message")
        return MessagePublic(**message) if message else None

    async def aclose(self) -> None:
        await self._client.aclose()


class WebSocketFeed:
    """Change feed read from the server's /realtime/ws endpoint."""

    def __init__(self, ws_url: str, token: str) -> None:
        self._url = f"{ws_url}?{urlencode({'token': token})}"

    async def subscribe_changes(self, table: str, event_types: Iterable[str], on_event: ChangeHandler):
        wanted = set(event_types)
        try:
            ws = await websockets.connect(self._url)
        except (OSError, InvalidHandshake) as exc:
            raise SubscriptionError(f"Could not connect to realtime feed: {exc}") from exc

        class _Sub:
            _running = True

            async def run(self_inner):
                try:
                    async for raw in ws:
                        try:
                            event = ChangeEvent.model_validate_json(raw)
                        except PydanticValidationError:
                            logger.warning("Dropping malformed change event")
                            continue
                        if event.table != table or event.type not in wanted:
                            continue
                        try:
                            await on_event(event)
                        except Exception:
                            logger.exception("Change handler failed")
                except ConnectionClosed as exc:
                    if self_inner._running:
                        raise SubscriptionError(f"Realtime feed closed: {exc}") from exc
                if self_inner._running:
                    raise SubscriptionError("Realtime feed closed by server")

            async def cancel(self_inner):
                self_inner._running = False
                await ws.close()

        return _Sub()
