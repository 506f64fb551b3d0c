import pytest

from edulink_chat.client.backend import LocalBackend
from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.enrollment_repository import EnrollmentRepository
from edulink_chat.repositories.message_repository import MessageRepository
from edulink_chat.repositories.user_repository import UserRepository
from edulink_chat.services.chat_service import ChatService
from edulink_chat.services.conversation_service import ConversationService
from edulink_chat.services.read_tracker import ReadTracker
from edulink_chat.utils.realtime_bus import LocalBus
from tests.fakes import FakeDatabase


STUDENT = "student-a"
STUDENT_B = "student-b"
INSTRUCTOR_X = "instructor-x"
INSTRUCTOR_Y = "instructor-y"


@pytest.fixture
def db():
    database = FakeDatabase()
    # mirrors ConversationRepository.ensure_indexes
    database["conversations"].unique_keys.append(["pair_key"])
    database["users"].seed(
        {"_id": STUDENT, "email": "ada@example.com", "full_name": "Ada Student", "role": "student"},
        {"_id": STUDENT_B, "email": "ben@example.com", "full_name": "Ben Student", "role": "student"},
        {"_id": INSTRUCTOR_X, "email": "xavier@example.com", "full_name": "Xavier Teach", "role": "educator", "avatar_url": "https://cdn.example.com/x.png"},
        {"_id": INSTRUCTOR_Y, "email": "yolanda@example.com", "full_name": "Yolanda Teach", "role": "educator"},
    )
    return database


@pytest.fixture
def bus():
    return LocalBus(channel_prefix="test")


@pytest.fixture
def conversation_repo(db):
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
def conversation_service(db):
    return ConversationService(ConversationRepository(db), MessageRepository(db), UserRepository(db), EnrollmentRepository(db))


@pytest.fixture
def chat_service(db, bus):
    return ChatService(MessageRepository(db), ConversationRepository(db), bus, max_length=200)


@pytest.fixture
def read_tracker(db, bus):
    return ReadTracker(MessageRepository(db), ConversationRepository(db), bus)


@pytest.fixture
def backend(db, bus):
    return LocalBackend.from_database(db, bus, max_length=200)


def enroll(db, student_id, *courses):
    """courses: (course_id, instructor_id, status) tuples."""
    for course_id, instructor_id, status in courses:
        db["courses"].seed({"_id": course_id, "title": f"Course {course_id}", "instructor_id": instructor_id})
        db["enrollments"].seed({"student_id": student_id, "course_id": course_id, "status": status})
