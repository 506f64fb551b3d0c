import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Set
from uuid import uuid4

import backoff

from edulink_chat.client.backend import MessagingBackend
from edulink_chat.client.presentation import filter_conversations
from edulink_chat.client.state import TEMP_ID_PREFIX, PendingSend, SessionState
from edulink_chat.config import settings
from edulink_chat.errors import MessagingError, PersistenceError, SubscriptionError, ValidationError
from edulink_chat.schemas.chat import ChangeEvent, ConversationPublic, ConversationSummary, MessagePublic
from edulink_chat.utils.validation import normalize_content


logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Failed to send message"


class ChatSession:
    """One user's live view of their conversations.

    Holds exactly one change-feed subscription for its lifetime. Event
    handling always reads the current ``state`` object, so a switch of the
    open conversation is seen by the very next event.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        feed,
        user_id: str,
        *,
        reconnect_base_delay: Optional[float] = None,
        reconnect_max_delay: Optional[float] = None,
        reconnect_max_attempts: Optional[int] = None,
        max_length: Optional[int] = None,
    ) -> None:
        self._backend = backend
        self._feed = feed
        self.state = SessionState(user_id=user_id)
        self._base_delay = reconnect_base_delay if reconnect_base_delay is not None else settings.reconnect_base_delay
        self._max_delay = reconnect_max_delay if reconnect_max_delay is not None else settings.reconnect_max_delay
        self._max_attempts = reconnect_max_attempts if reconnect_max_attempts is not None else settings.reconnect_max_attempts
        self._max_length = max_length
        self._subscription = None
        self._supervisor: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._directory_generation = 0
        self._closed = False

    @property
    def user_id(self) -> str:
        return self.state.user_id

    @property
    def connected(self) -> bool:
        return self._subscription is not None

    async def __aenter__(self) -> "ChatSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # lifecycle

    async def start(self, open_first: bool = False) -> None:
        if self._supervisor is not None:
            raise RuntimeError("Session already started")
        try:
            self._subscription = await self._subscribe()
        except SubscriptionError as exc:
            logger.warning(f"Realtime subscription failed for {self.user_id}: {exc.message}")
        self._supervisor = asyncio.create_task(self._supervise())
        conversations = await self.load_directory()
        if open_first and conversations and self.state.active_conversation_id is None:
            await self.open_conversation(conversations[0].id)

    async def close(self) -> None:
        self._closed = True
        if self._subscription is not None:
            await self._subscription.cancel()
            self._subscription = None
        if self._supervisor is not None:
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
            self._supervisor = None
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait for fire-and-forget work (read flips, directory refreshes) to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _subscribe(self):
        return await self._feed.subscribe_changes("messages", ("INSERT", "UPDATE"), self.handle_change)

    def _log_backoff(self, details) -> None:
        logger.info(f"Realtime reconnect attempt {details['tries']} failed, retrying in {details['wait']:.1f}s")

    async def _resubscribe(self):
        retry = backoff.on_exception(
            backoff.expo,
            SubscriptionError,
            max_tries=self._max_attempts,
            factor=self._base_delay,
            max_value=self._max_delay,
            jitter=None,
            on_backoff=self._log_backoff,
            logger=None,
        )
        return await retry(self._subscribe)()

    async def _supervise(self) -> None:
        while not self._closed:
            if self._subscription is None:
                try:
                    self._subscription = await self._resubscribe()
                except SubscriptionError as exc:
                    logger.error(f"Giving up on realtime updates for {self.user_id}: {exc.message}")
                    return
                logger.info(f"Realtime subscription restored for {self.user_id}")
                await self._recover()
            try:
                await self._subscription.run()
            except SubscriptionError as exc:
                logger.warning(f"Realtime subscription dropped for {self.user_id}: {exc.message}")
            if self._closed:
                return
            self._subscription = None

    async def _recover(self) -> None:
        # events may have been missed while disconnected
        await self.refresh_directory()
        if self.state.active_conversation_id is not None:
            await self._load_history(self.state.active_conversation_id)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background chat task failed", exc_info=task.exception())

    # directory

    async def load_directory(self) -> List[ConversationSummary]:
        """First directory load; seeds a student's conversations from enrollments when empty."""
        self._directory_generation += 1
        generation = self._directory_generation
        try:
            items = await self._backend.load_directory(self.user_id)
        except MessagingError as exc:
            logger.error(f"Loading conversations for {self.user_id} failed: {exc.message}")
            return self.state.conversations
        if generation == self._directory_generation:
            self.state.set_conversations(items)
        return self.state.conversations

    async def refresh_directory(self) -> List[ConversationSummary]:
        self._directory_generation += 1
        generation = self._directory_generation
        try:
            items = await self._backend.list_conversations(self.user_id)
        except MessagingError as exc:
            logger.error(f"Refreshing conversations for {self.user_id} failed: {exc.message}")
            return self.state.conversations
        # a refresh that started earlier but finished later must not win
        if generation == self._directory_generation:
            self.state.set_conversations(items)
        return self.state.conversations

    def search(self, query: str) -> List[ConversationSummary]:
        return filter_conversations(self.state.conversations, query)

    async def message_user(self, other_user_id: str) -> ConversationPublic:
        """Open (creating if needed) the conversation with another user."""
        conversation = await self._backend.ensure_conversation(self.user_id, other_user_id)
        await self.refresh_directory()
        await self.open_conversation(conversation.id)
        return conversation

    # thread

    async def _load_history(self, conversation_id: str) -> None:
        try:
            history = await self._backend.fetch_messages(conversation_id, self.user_id)
        except MessagingError as exc:
            logger.error(f"Loading messages for {conversation_id} failed: {exc.message}")
            return
        self.state.load_history(conversation_id, history)

    async def open_conversation(self, conversation_id: str) -> List[MessagePublic]:
        self.state.switch_to(conversation_id)
        await self._load_history(conversation_id)
        try:
            await self._backend.mark_conversation_read(conversation_id, self.user_id)
        except MessagingError as exc:
            logger.error(f"Marking {conversation_id} read failed: {exc.message}")
        else:
            # refreshes started before the bulk read carry stale unread counts
            self._directory_generation += 1
            self.state.zero_unread(conversation_id)
        return self.state.messages

    async def send_message(self, content: str) -> MessagePublic:
        text = normalize_content(content, self._max_length)
        conversation = self.state.active_conversation()
        if conversation is None:
            raise ValidationError("No conversation is open")
        conversation_id = conversation.id
        receiver_id = conversation.participant.id

        duplicate = self.state.find_pending(conversation_id, text)
        if duplicate is not None:
            logger.debug(f"Ignoring repeated submission while {duplicate.temp_id} is in flight")
            return duplicate.message

        temp_id = f"{TEMP_ID_PREFIX}{uuid4().hex}"
        optimistic = MessagePublic(
            id=temp_id,
            conversation_id=conversation_id,
            sender_id=self.user_id,
            receiver_id=receiver_id,
            content=text,
            read=False,
            created_at=datetime.now(timezone.utc),
            client_message_id=temp_id,
            pending=True,
        )
        self.state.add_pending(PendingSend(temp_id=temp_id, conversation_id=conversation_id, content=text, message=optimistic))
        self.state.last_error = None

        try:
            saved = await self._backend.send_message(conversation_id, self.user_id, receiver_id, text, client_message_id=temp_id)
        except Exception as exc:
            self.state.discard_pending(temp_id)
            self.state.last_error = SEND_FAILED_MESSAGE
            logger.error(f"Sending message in {conversation_id} failed: {exc}")
            if isinstance(exc, MessagingError):
                raise
            raise PersistenceError(f"{SEND_FAILED_MESSAGE}: {exc}") from exc

        self.state.confirm_pending(temp_id, saved)
        self.state.note_sent(saved)
        return saved

    # realtime

    async def handle_change(self, event: ChangeEvent) -> None:
        row = event.row
        if not self.state.is_relevant(row):
            return
        if event.type == "UPDATE":
            self.state.apply_update(row)
            return

        is_open = row.conversation_id == self.state.active_conversation_id
        self.state.apply_insert(row)
        if is_open and row.receiver_id == self.user_id and not row.read:
            self._spawn(self._read_then_refresh(row.id))
        else:
            self._spawn(self.refresh_directory())

    async def _read_then_refresh(self, message_id: str) -> None:
        try:
            await self._backend.mark_message_read(message_id, self.user_id)
        except MessagingError as exc:
            logger.error(f"Marking message {message_id} read failed: {exc.message}")
        await self.refresh_directory()
