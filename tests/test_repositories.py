import asyncio
from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from edulink_chat.errors import PersistenceError
from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.enrollment_repository import EnrollmentRepository
from edulink_chat.repositories.user_repository import UserRepository
from tests.conftest import INSTRUCTOR_X, INSTRUCTOR_Y, STUDENT, enroll
from tests.fakes import FakeDatabase


@pytest.mark.asyncio
async def test_ensure_indexes_declares_unique_pair_key():
    db = FakeDatabase()
    await ConversationRepository(db).ensure_indexes()

    assert ["pair_key"] in db["conversations"].unique_keys


@pytest.mark.asyncio
async def test_insert_if_absent_returns_existing_row_on_conflict(conversation_repo):
    first, created_first = await conversation_repo.insert_if_absent(STUDENT, INSTRUCTOR_X)
    second, created_second = await conversation_repo.insert_if_absent(INSTRUCTOR_X, STUDENT)

    assert created_first is True
    assert created_second is False
    assert second["id"] == first["id"]
    assert second["participant_1_id"] == STUDENT


@pytest.mark.asyncio
async def test_find_between_is_symmetric(conversation_repo):
    created = await conversation_repo.insert(INSTRUCTOR_X, STUDENT)

    assert (await conversation_repo.find_between(STUDENT, INSTRUCTOR_X))["id"] == created["id"]
    assert (await conversation_repo.find_between(INSTRUCTOR_X, STUDENT))["id"] == created["id"]
    assert await conversation_repo.find_between(STUDENT, INSTRUCTOR_Y) is None


@pytest.mark.asyncio
async def test_get_by_id_ignores_malformed_ids(conversation_repo):
    assert await conversation_repo.get_by_id("not-an-object-id") is None


@pytest.mark.asyncio
async def test_backend_failures_become_persistence_errors(db, conversation_repo):
    db["conversations"].fail_next["find_one"] = ServerSelectionTimeoutError("no primary")

    with pytest.raises(PersistenceError):
        await conversation_repo.find_between(STUDENT, INSTRUCTOR_X)


@pytest.mark.asyncio
async def test_list_for_user_orders_by_last_message_desc(conversation_repo):
    older = await conversation_repo.insert(STUDENT, INSTRUCTOR_X)
    newer = await conversation_repo.insert(STUDENT, INSTRUCTOR_Y)
    await conversation_repo.update_summary(older["id"], "bump", datetime(2030, 1, 1, tzinfo=timezone.utc))

    listed = await conversation_repo.list_for_user(STUDENT)

    assert [c["id"] for c in listed] == [older["id"], newer["id"]]
    assert [c["id"] for c in await conversation_repo.list_for_user(INSTRUCTOR_Y)] == [newer["id"]]


@pytest.mark.asyncio
async def test_history_is_ordered_by_created_at_then_id(db, message_repo):
    same_instant = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    first = await message_repo.save_message("c1", STUDENT, INSTRUCTOR_X, "one")
    second = await message_repo.save_message("c1", INSTRUCTOR_X, STUDENT, "two")
    third = await message_repo.save_message("c1", STUDENT, INSTRUCTOR_X, "three")
    # force a timestamp tie between the last two; insertion order must win
    for doc in db["messages"].docs:
        if doc["content"] in ("two", "three"):
            doc["created_at"] = same_instant
        else:
            doc["created_at"] = datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc)

    history = await message_repo.get_messages_by_conversation("c1")

    assert [m["id"] for m in history] == [first["id"], second["id"], third["id"]]
    stamps = [m["created_at"] for m in history]
    assert stamps == sorted(stamps)


@pytest.mark.asyncio
async def test_mark_conversation_read_returns_only_flipped_rows(message_repo):
    a = await message_repo.save_message("c1", STUDENT, INSTRUCTOR_X, "to x")
    await message_repo.save_message("c1", INSTRUCTOR_X, STUDENT, "to student")
    b = await message_repo.save_message("c1", STUDENT, INSTRUCTOR_X, "to x again")

    flipped = await message_repo.mark_conversation_read("c1", INSTRUCTOR_X)

    assert [row["id"] for row in flipped] == [a["id"], b["id"]]
    assert all(row["read"] for row in flipped)
    assert await message_repo.count_unread("c1", INSTRUCTOR_X) == 0
    assert await message_repo.count_unread("c1", STUDENT) == 1
    assert await message_repo.mark_conversation_read("c1", INSTRUCTOR_X) == []


@pytest.mark.asyncio
async def test_mark_message_read_only_changes_unread_rows(message_repo):
    saved = await message_repo.save_message("c1", STUDENT, INSTRUCTOR_X, "hi")

    updated = await message_repo.mark_message_read(saved["id"])
    again = await message_repo.mark_message_read(saved["id"])

    assert updated["read"] is True
    assert again is None


@pytest.mark.asyncio
async def test_instructor_ids_are_distinct_and_skip_inactive_enrollments(db):
    enroll(
        db,
        STUDENT,
        ("c1", INSTRUCTOR_X, "active"),
        ("c2", INSTRUCTOR_X, "active"),
        ("c3", INSTRUCTOR_Y, "completed"),
        ("c4", "instructor-z", "refunded"),
    )

    ids = await EnrollmentRepository(db).instructor_ids_for_student(STUDENT)

    assert sorted(ids) == [INSTRUCTOR_X, INSTRUCTOR_Y]


@pytest.mark.asyncio
async def test_users_are_looked_up_in_bulk(db):
    users = await UserRepository(db).get_users_by_ids([INSTRUCTOR_X, "ghost"])

    assert set(users) == {INSTRUCTOR_X}
    assert users[INSTRUCTOR_X]["full_name"] == "Xavier Teach"


@pytest.mark.asyncio
async def test_concurrent_inserts_leave_one_row(db, conversation_repo):
    results = await asyncio.gather(
        *(conversation_repo.insert_if_absent(STUDENT, INSTRUCTOR_X) for _ in range(5))
    )

    assert len({doc["id"] for doc, _ in results}) == 1
    assert sum(created for _, created in results) == 1
    assert len(db["conversations"].docs) == 1


@pytest.mark.asyncio
async def test_summary_never_moves_back_to_an_older_message(conversation_repo):
    conversation = await conversation_repo.insert(STUDENT, INSTRUCTOR_X)
    newer_at = datetime(2030, 1, 1, 12, 0, 1, tzinfo=timezone.utc)
    older_at = datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    await conversation_repo.update_summary(conversation["id"], "newer", newer_at)
    await conversation_repo.update_summary(conversation["id"], "older", older_at)

    stored = await conversation_repo.get_by_id(conversation["id"])
    assert stored["last_message"] == "newer"
    assert stored["last_message_at"] == newer_at


@pytest.mark.asyncio
async def test_enrollments_keyed_by_object_id_are_found(db):
    student_oid = ObjectId()
    enroll(db, student_oid, ("c1", INSTRUCTOR_X, "active"))

    ids = await EnrollmentRepository(db).instructor_ids_for_student(str(student_oid))

    assert ids == [INSTRUCTOR_X]
