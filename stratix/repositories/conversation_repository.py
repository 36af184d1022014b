from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from stratix.models.conversation import ConversationDocument, LastMessageSnapshot


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("updated_at", DESCENDING)])
        await self.collection.create_index([("participants_key", ASCENDING)], unique=True)

    @staticmethod
    def participants_key(participants: Iterable[str]) -> str:
        return ":".join(sorted(set(participants)))

    async def get_by_id(self, conversation_id: ObjectId) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"_id": conversation_id})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def get_or_create(self, participants: List[str]) -> Tuple[ConversationDocument, bool]:
        """Return ``(conversation, created)`` for the exact participant set."""
        key = self.participants_key(participants)
        existing = await self.collection.find_one({"participants_key": key})
        if existing:
            existing["_id"] = str(existing["_id"])
            return existing, False
        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            "participants": sorted(set(participants)),
            "participants_key": key,
            "last_message": None,
            "unread_counts": {p: 0 for p in participants},
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            # lost a creation race against the same participant set
            existing = await self.collection.find_one({"participants_key": key})
            existing["_id"] = str(existing["_id"])
            return existing, False
        doc["_id"] = str(result.inserted_id)
        return doc, True

    async def update_on_new_message(self, conversation_id: ObjectId, snapshot: LastMessageSnapshot, recipients: List[str]) -> None:
        ts = snapshot["timestamp"]
        inc = {f"unread_counts.{r}": 1 for r in recipients}
        update: Dict[str, Any] = {"$set": {"last_message": snapshot, "updated_at": ts}}
        if inc:
            update["$inc"] = inc
        # an older message never replaces a newer snapshot
        result = await self.collection.update_one(
            {
                "_id": conversation_id,
                "$or": [{"last_message": None}, {"last_message.timestamp": {"$lte": ts}}],
            },
            update,
        )
        if result.matched_count == 0 and inc:
            await self.collection.update_one({"_id": conversation_id}, {"$inc": inc})

    async def set_last_message(self, conversation_id: ObjectId, snapshot: Optional[LastMessageSnapshot]) -> bool:
        """Repair write; returns False when a newer snapshot is already stored."""
        if snapshot is None:
            # clearing is only valid while nothing has been recorded
            result = await self.collection.update_one(
                {"_id": conversation_id, "last_message": None}, {"$set": {"last_message": None}}
            )
            return result.matched_count > 0
        ts = snapshot["timestamp"]
        result = await self.collection.update_one(
            {
                "_id": conversation_id,
                "$or": [
                    {"last_message": None},
                    {"last_message.timestamp": {"$lt": ts}},
                    {"last_message.message_id": snapshot["message_id"]},
                ],
            },
            {"$set": {"last_message": snapshot, "updated_at": ts}},
        )
        return result.matched_count > 0

    async def decrement_unread(self, conversation_id: ObjectId, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": conversation_id, f"unread_counts.{user_id}": {"$gt": 0}},
            {"$inc": {f"unread_counts.{user_id}": -1}},
        )

    async def reset_unread(self, conversation_id: ObjectId, user_id: str, remaining: int = 0) -> None:
        await self.collection.update_one(
            {"_id": conversation_id},
            {"$set": {f"unread_counts.{user_id}": remaining}},
        )

    async def list_for_user(self, user_id: str, skip: int = 0, limit: int = 20) -> List[ConversationDocument]:
        query = {"participants": user_id}
        sort = [("updated_at", DESCENDING), ("_id", DESCENDING)]
        cursor_db = self.collection.find(query).sort(sort).skip(skip).limit(limit)
        items = await cursor_db.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def count_for_user(self, user_id: str) -> int:
        return await self.collection.count_documents({"participants": user_id})

    async def ids_for_user(self, user_id: str) -> List[ObjectId]:
        cursor_db = self.collection.find({"participants": user_id}, {"_id": 1})
        return [doc["_id"] async for doc in cursor_db]

    async def delete(self, conversation_id: ObjectId) -> bool:
        result = await self.collection.delete_one({"_id": conversation_id})
        return result.deleted_count > 0
