import asyncio
from datetime import datetime, timezone

import pytest

from edulink_chat.schemas.chat import ChangeEvent, MessagePublic
from edulink_chat.utils.realtime_bus import publish_message_change
from edulink_chat.config import settings
from edulink_chat.errors import SubscriptionError
from edulink_chat.routers import realtime
from edulink_chat.utils.security import create_access_token
from edulink_chat.utils.websocket_manager import ConnectionManager, RealtimeRelay, manager
from tests.fakes import settle


class FakeSocket:

    def __init__(self, broken=False):
        self.sent = []
        self.accepted = False
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(text)


def _message(sender="a", receiver="b"):
    return MessagePublic(
        id="m1",
        conversation_id="c1",
        sender_id=sender,
        receiver_id=receiver,
        content="hello",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_relay_forwards_to_both_participants_only(bus):
    manager = ConnectionManager()
    sender, receiver, bystander = FakeSocket(), FakeSocket(), FakeSocket()
    await manager.connect("a", sender)
    await manager.connect("b", receiver)
    await manager.connect("c", bystander)
    relay = RealtimeRelay(bus, manager)
    await relay.start()

    await publish_message_change(bus, "INSERT", _message())
    await settle()
    await relay.stop()

    assert sender.accepted
    assert [ChangeEvent.model_validate_json(t).row.id for t in sender.sent] == ["m1"]
    assert len(receiver.sent) == 1
    assert bystander.sent == []
    assert bus.subscriber_count(bus.channel_for("messages")) == 0


@pytest.mark.asyncio
async def test_broken_sockets_are_dropped():
    manager = ConnectionManager()
    healthy, broken = FakeSocket(), FakeSocket(broken=True)
    await manager.connect("b", healthy)
    await manager.connect("b", broken)

    await manager.send_personal_message("b", "payload")

    assert healthy.sent == ["payload"]
    assert manager.active_connections["b"] == [healthy]


@pytest.mark.asyncio
async def test_message_to_self_is_delivered_once(bus):
    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect("a", socket)
    relay = RealtimeRelay(bus, manager)
    await relay.start()

    await publish_message_change(bus, "UPDATE", _message(sender="a", receiver="a"))
    await settle()
    await relay.stop()
    await asyncio.sleep(0)

    assert len(socket.sent) == 1


class RefusingFeed:
    """Refuses the first few subscriptions, then hands over to a real bus."""

    def __init__(self, bus, refusals):
        self._bus = bus
        self.refusals = refusals

    async def subscribe_changes(self, table, event_types, on_event):
        if self.refusals:
            self.refusals -= 1
            raise SubscriptionError("bus unavailable")
        return await self._bus.subscribe_changes(table, event_types, on_event)


@pytest.mark.asyncio
async def test_relay_retries_a_refused_subscription_with_logged_backoff(bus, monkeypatch, caplog):
    monkeypatch.setattr(settings, "reconnect_base_delay", 0.01)
    monkeypatch.setattr(settings, "reconnect_max_delay", 0.02)
    caplog.set_level("INFO", logger="edulink_chat.utils.websocket_manager")
    connections = ConnectionManager()
    socket = FakeSocket()
    await connections.connect("b", socket)
    relay = RealtimeRelay(RefusingFeed(bus, refusals=2), connections)

    await relay.start()
    for _ in range(200):
        if bus.subscriber_count(bus.channel_for("messages")):
            break
        await asyncio.sleep(0.01)
    await publish_message_change(bus, "INSERT", _message())
    await settle()
    await relay.stop()

    assert len(socket.sent) == 1
    assert "Realtime relay reconnect attempt 1 failed, retrying in 0.0s" in caplog.text


class ExplodingSocket(FakeSocket):

    def __init__(self, token):
        super().__init__()
        self.query_params = {"token": token}

    async def receive_text(self):
        raise RuntimeError("transport error")

    async def close(self, code=1000):
        return None


@pytest.mark.asyncio
async def test_socket_is_unregistered_when_the_connection_errors():
    socket = ExplodingSocket(create_access_token("student-err", "err@example.com"))

    with pytest.raises(RuntimeError):
        await realtime.realtime_socket(socket)

    assert socket.accepted
    assert "student-err" not in manager.active_connections
