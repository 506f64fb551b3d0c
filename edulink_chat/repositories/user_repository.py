from typing import Any, Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from edulink_chat.repositories.base import backend_errors, id_candidates, serialize


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_user_by_id(self, user_id: str) -> Optional[dict]:
        with backend_errors("load user"):
            user = await self._collection.find_one({"_id": {"$in": id_candidates(user_id)}})
        return serialize(user) if user else None

    async def get_users_by_ids(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        candidates: list = []
        for user_id in set(user_ids):
            candidates.extend(id_candidates(user_id))
        if not candidates:
            return {}
        with backend_errors("load users"):
            docs = await self._collection.find({"_id": {"$in": candidates}}).to_list(length=None)
        users = [serialize(doc) for doc in docs]
        return {u["id"]: u for u in users}
