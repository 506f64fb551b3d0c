import asyncio
import logging
from typing import Dict, List, Optional

import backoff
from fastapi import WebSocket

from edulink_chat.config import settings
from edulink_chat.errors import SubscriptionError
from edulink_chat.schemas.chat import ChangeEvent
from edulink_chat.utils.realtime_bus import ChangeFeed


logger = logging.getLogger(__name__)


class ConnectionManager:

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        if user_id not in self.active_connections:
            self.active_connections[user_id] = []
        self.active_connections[user_id].append(websocket)
        logger.info(f"User {user_id} connected ({len(self.active_connections[user_id])} sockets)")

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        if user_id in self.active_connections:
            try:
                self.active_connections[user_id].remove(websocket)
            except ValueError:
                pass
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]
        logger.info(f"User {user_id} disconnected")

    async def send_personal_message(self, receiver_id: str, message: str) -> None:
        if receiver_id in self.active_connections:
            for conn in list(self.active_connections[receiver_id]):
                try:
                    await conn.send_text(message)
                except Exception as e:
                    logger.error(f"Error sending to {receiver_id}: {e}")
                    self.disconnect(receiver_id, conn)


class RealtimeRelay:
    """One bus subscription per process, forwarding message changes to the
    sockets of the sender and the receiver."""

    def __init__(self, bus: ChangeFeed, manager: ConnectionManager) -> None:
        self._bus = bus
        self._manager = manager
        self._subscription = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    async def _forward(self, event: ChangeEvent) -> None:
        payload = event.model_dump_json()
        for user_id in {event.row.sender_id, event.row.receiver_id}:
            await self._manager.send_personal_message(user_id, payload)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stopped = False
        try:
            self._subscription = await self._subscribe()
        except SubscriptionError as exc:
            logger.error(f"Realtime relay could not subscribe, retrying in background: {exc.message}")
        self._task = asyncio.create_task(self._run())

    def _log_backoff(self, details) -> None:
        logger.info(f"Realtime relay reconnect attempt {details['tries']} failed, retrying in {details['wait']:.1f}s")

    async def _subscribe(self):
        return await self._bus.subscribe_changes("messages", ("INSERT", "UPDATE"), self._forward)

    async def _run(self) -> None:
        resubscribe = backoff.on_exception(
            backoff.expo,
            SubscriptionError,
            factor=settings.reconnect_base_delay,
            max_value=settings.reconnect_max_delay,
            max_tries=settings.reconnect_max_attempts,
            jitter=None,
            on_backoff=self._log_backoff,
            logger=None,
        )(self._subscribe)
        while not self._stopped:
            if self._subscription is None:
                try:
                    self._subscription = await resubscribe()
                except SubscriptionError as exc:
                    logger.error(f"Realtime relay gave up reconnecting: {exc.message}")
                    return
            try:
                await self._subscription.run()
            except SubscriptionError as exc:
                logger.warning(f"Realtime relay lost its subscription: {exc.message}")
            if self._stopped:
                return
            self._subscription = None

    async def stop(self) -> None:
        self._stopped = True
        if self._subscription is not None:
            await self._subscription.cancel()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


manager = ConnectionManager()
