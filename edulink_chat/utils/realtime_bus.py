import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from edulink_chat.config import settings
from edulink_chat.errors import SubscriptionError
from edulink_chat.schemas.chat import ChangeEvent


logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]
ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class ChangeFeed:
    """Table-level change events on top of a raw publish/subscribe bus."""

    enabled = False
    channel_prefix: str = "realtime"

    async def publish(self, channel: str, message: str) -> None:
        raise NotImplementedError

    async def subscribe(self, channel: str, on_message: MessageHandler):
        raise NotImplementedError

    async def close(self) -> None:
        return

    def channel_for(self, table: str) -> str:
        return f"{self.channel_prefix}:{table}"

    async def publish_change(self, event: ChangeEvent) -> None:
        await self.publish(self.channel_for(event.table), event.model_dump_json())

    async def subscribe_changes(self, table: str, event_types: Iterable[str], on_event: ChangeHandler):
        wanted = set(event_types)

        async def _on_message(raw: str) -> None:
            try:
                event = ChangeEvent.model_validate_json(raw)
            except PydanticValidationError:
                logger.warning(f"Dropping malformed change event on {table}")
                return
            if event.type in wanted:
                await on_event(event)

        return await self.subscribe(self.channel_for(table), _on_message)


async def _deliver(on_message: MessageHandler, message: str) -> None:
    try:
        await on_message(message)
    except Exception:
        logger.exception("Change handler failed")


class LocalBus(ChangeFeed):
    """In-process fan-out; every subscriber gets every message on its channel."""

    enabled = False

    def __init__(self, channel_prefix: str | None = None) -> None:
        self.channel_prefix = channel_prefix or settings.realtime_channel_prefix
        self._queues: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._queues.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(channel, set()).add(queue)
        bus = self

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    message = await queue.get()
                    if message is None:
                        break
                    await _deliver(on_message, message)

            async def cancel(self_inner):
                self_inner._running = False
                bus._queues.get(channel, set()).discard(queue)
                queue.put_nowait(None)

        return _Sub()

    def subscriber_count(self, channel: str) -> int:
        return len(self._queues.get(channel, ()))

    async def close(self) -> None:
        for queues in self._queues.values():
            for queue in queues:
                queue.put_nowait(None)
        self._queues.clear()


class RedisBus(ChangeFeed):

    enabled = True

    def __init__(self, url: str, channel_prefix: str | None = None, client=None) -> None:
        self._redis = client if client is not None else redis.from_url(url)
        self.channel_prefix = channel_prefix or settings.realtime_channel_prefix

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            raise SubscriptionError(f"Could not subscribe to {channel}: {exc}") from exc

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except RedisError as exc:
                        self_inner._running = False
                        raise SubscriptionError(f"Lost subscription to {channel}: {exc}") from exc
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        await _deliver(on_message, data)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except RedisError:
                    logger.warning(f"Could not cleanly unsubscribe from {channel}")

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus: Optional[ChangeFeed] = None


async def get_bus() -> ChangeFeed:
    global _bus
    if _bus is not None:
        return _bus
    if settings.redis_url:
        logger.info("Using Redis realtime bus")
        _bus = RedisBus(settings.redis_url)
    else:
        logger.info("REDIS_URL not set, using in-process realtime bus")
        _bus = LocalBus()
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None


async def publish_message_change(bus: Optional[ChangeFeed], change_type: str, message) -> None:
    # the row is already durable; a lost notification must not fail the write
    if bus is None:
        return
    try:
        await bus.publish_change(ChangeEvent(type=change_type, table="messages", row=message))
    except Exception:
        logger.exception(f"Failed to publish {change_type} for message {message.id}")
