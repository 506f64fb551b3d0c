import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from edulink_chat.errors import ConflictError, NotFoundError
from edulink_chat.models.conversation import pair_key
from edulink_chat.repositories.base import backend_errors, serialize, to_object_id


logger = logging.getLogger(__name__)


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        with backend_errors("create conversation indexes"):
            await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
            await self.collection.create_index([("participant_1_id", ASCENDING)])
            await self.collection.create_index([("participant_2_id", ASCENDING)])
            await self.collection.create_index([("last_message_at", DESCENDING)])

    async def get_by_id(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        with backend_errors("load conversation"):
            doc = await self.collection.find_one({"_id": oid})
        return serialize(doc) if doc else None

    async def find_between(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        with backend_errors("find conversation"):
            doc = await self.collection.find_one({"pair_key": pair_key(user_a, user_b)})
        return serialize(doc) if doc else None

    async def insert(self, user_a: str, user_b: str) -> Dict[str, Any]:
        """Insert a new conversation; raises ConflictError if the pair already has one."""
        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            "participant_1_id": user_a,
            "participant_2_id": user_b,
            "pair_key": pair_key(user_a, user_b),
            "last_message": None,
            "last_message_at": now,
            "created_at": now,
        }
        with backend_errors("insert conversation"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize(doc)

    async def insert_if_absent(self, user_a: str, user_b: str) -> Tuple[Dict[str, Any], bool]:
        """Conditional insert: returns (conversation, created).

        A duplicate-key conflict means another caller created the row first,
        so the existing row is re-fetched and returned instead.
        """
        try:
            return await self.insert(user_a, user_b), True
        except ConflictError:
            logger.info(f"Conversation {pair_key(user_a, user_b)} created concurrently, re-fetching")
        existing = await self.find_between(user_a, user_b)
        if existing is None:
            raise NotFoundError(f"Conversation {pair_key(user_a, user_b)} not found")
        return existing, False

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        query = {"$or": [{"participant_1_id": user_id}, {"participant_2_id": user_id}]}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        with backend_errors("list conversations"):
            items = await self.collection.find(query).sort(sort).to_list(length=None)
        return [serialize(it) for it in items]

    async def update_summary(self, conversation_id: str, last_message: str, last_message_at: datetime) -> None:
        # a delayed write for an older message must not replace a newer summary
        query = {"_id": to_object_id(conversation_id), "last_message_at": {"$lte": last_message_at}}
        with backend_errors("update conversation summary"):
            await self.collection.update_one(
                query,
                {"$set": {"last_message": last_message, "last_message_at": last_message_at}},
            )
