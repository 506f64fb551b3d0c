import asyncio

import pytest

from edulink_chat.errors import NotFoundError, PermissionDeniedError
from tests.conftest import INSTRUCTOR_X, INSTRUCTOR_Y, STUDENT
from tests.fakes import settle


@pytest.mark.asyncio
async def test_opening_a_conversation_clears_its_unread_badge(conversation_service, chat_service, read_tracker):
    conversation = await conversation_service.ensure_conversation(STUDENT, INSTRUCTOR_X)
    for text in ("one", "two", "three"):
        await chat_service.send_message(conversation.id, STUDENT, INSTRUCTOR_X, text)
    await chat_service.send_message(conversation.id, INSTRUCTOR_X, STUDENT, "reply")
    [before] = await conversation_service.list_conversations(INSTRUCTOR_X)

    updated = await read_tracker.mark_conversation_read(conversation.id, INSTRUCTOR_X)

    [after] = await conversation_service.list_conversations(INSTRUCTOR_X)
    history = await chat_service.get_history(conversation.id, INSTRUCTOR_X)
    assert before.unread == 3
    assert updated == 3
    assert after.unread == 0
    assert all(m.read for m in history if m.receiver_id == INSTRUCTOR_X)
    # the student's own unread message is untouched
    [student_entry] = await conversation_service.list_conversations(STUDENT)
    assert student_entry.unread == 1


@pytest.mark.asyncio
async def test_bulk_read_publishes_one_update_per_flipped_message(bus, conversation_service, chat_service, read_tracker):
    conversation = await conversation_service.ensure_conversation(STUDENT, INSTRUCTOR_X)
    first = await chat_service.send_message(conversation.id, STUDENT, INSTRUCTOR_X, "one")
    second = await chat_service.send_message(conversation.id, STUDENT, INSTRUCTOR_X, "two")
    received = []

    async def handler(event):
        received.append(event)

    subscription = await bus.subscribe_changes("messages", ("UPDATE",), handler)
    task = asyncio.create_task(subscription.run())
    await read_tracker.mark_conversation_read(conversation.id, INSTRUCTOR_X)
    await read_tracker.mark_conversation_read(conversation.id, INSTRUCTOR_X)
    await settle()
    await subscription.cancel()
    await task

    assert [(e.type, e.row.id, e.row.read) for e in received] == [
        ("UPDATE", first.id, True),
        ("UPDATE", second.id, True),
    ]


@pytest.mark.asyncio
async def test_read_is_monotonic(conversation_service, chat_service, read_tracker, message_repo):
    conversation = await conversation_service.ensure_conversation(STUDENT, INSTRUCTOR_X)
    message = await chat_service.send_message(conversation.id, STUDENT, INSTRUCTOR_X, "hi")

    flipped = await read_tracker.mark_message_read(message.id, INSTRUCTOR_X)
    again = await read_tracker.mark_message_read(message.id, INSTRUCTOR_X)
    await read_tracker.mark_conversation_read(conversation.id, INSTRUCTOR_X)

    assert flipped.read is True
    assert again is None
    assert (await message_repo.get_by_id(message.id))["read"] is True


@pytest.mark.asyncio
async def test_only_the_receiver_can_mark_a_message_read(conversation_service, chat_service, read_tracker):
    conversation = await conversation_service.ensure_conversation(STUDENT, INSTRUCTOR_X)
    message = await chat_service.send_message(conversation.id, STUDENT, INSTRUCTOR_X, "hi")

    with pytest.raises(PermissionDeniedError):
        await read_tracker.mark_message_read(message.id, STUDENT)


@pytest.mark.asyncio
async def test_unknown_message(read_tracker):
    with pytest.raises(NotFoundError):
        await read_tracker.mark_message_read("65f000000000000000000000", STUDENT)


@pytest.mark.asyncio
async def test_bulk_read_requires_participation(conversation_service, read_tracker):
    conversation = await conversation_service.ensure_conversation(STUDENT, INSTRUCTOR_X)

    with pytest.raises(PermissionDeniedError):
        await read_tracker.mark_conversation_read(conversation.id, INSTRUCTOR_Y)
