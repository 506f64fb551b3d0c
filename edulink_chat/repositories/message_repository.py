from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from edulink_chat.repositories.base import backend_errors, serialize, to_object_id


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        with backend_errors("create message indexes"):
            await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
            await self.collection.create_index([("conversation_id", ASCENDING), ("receiver_id", ASCENDING), ("read", ASCENDING)])

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "read": False,
            # the store's clock is the ordering authority, never the client's
            "created_at": datetime.now(timezone.utc),
            "client_message_id": client_message_id,
        }
        with backend_errors("save message"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize(doc)

    async def get_by_id(self, message_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        with backend_errors("load message"):
            doc = await self.collection.find_one({"_id": oid})
        return serialize(doc) if doc else None

    async def get_messages_by_conversation(self, conversation_id: str) -> List[Dict[str, Any]]:
        # ObjectIds grow with insertion, so they break created_at ties
        sort = [("created_at", ASCENDING), ("_id", ASCENDING)]
        with backend_errors("load message history"):
            items = await self.collection.find({"conversation_id": conversation_id}).sort(sort).to_list(length=None)
        return [serialize(it) for it in items]

    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        with backend_errors("count unread messages"):
            return await self.collection.count_documents(
                {"conversation_id": conversation_id, "receiver_id": user_id, "read": False}
            )

    async def mark_conversation_read(self, conversation_id: str, receiver_id: str) -> List[Dict[str, Any]]:
        """Flip every unread message addressed to receiver_id; returns the flipped rows."""
        query: Dict[str, Any] = {"conversation_id": conversation_id, "receiver_id": receiver_id, "read": False}
        with backend_errors("mark conversation read"):
            unread = await self.collection.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)]).to_list(length=None)
            if not unread:
                return []
            await self.collection.update_many(
                {"_id": {"$in": [doc["_id"] for doc in unread]}, "read": False},
                {"$set": {"read": True}},
            )
        flipped = []
        for doc in unread:
            doc["read"] = True
            flipped.append(serialize(doc))
        return flipped

    async def mark_message_read(self, message_id: str) -> Optional[Dict[str, Any]]:
        """Flip a single message; returns the row only if it actually changed."""
        oid = to_object_id(message_id)
        if oid is None:
            return None
        with backend_errors("mark message read"):
            doc = await self.collection.find_one_and_update(
                {"_id": oid, "read": False},
                {"$set": {"read": True}},
                return_document=ReturnDocument.AFTER,
            )
        return serialize(doc) if doc else None
