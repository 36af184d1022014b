from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from stratix.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("sender_id", ASCENDING)])
        await self.collection.create_index([("created_at", DESCENDING)])

    async def save_message(
        self,
        conversation_id: ObjectId,
        sender_id: str,
        text: str,
        attachments: Optional[List[str]] = None,
    ) -> MessageDocument:
        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "text": text,
            "attachments": list(attachments or []),
            "is_read": False,
            "read_at": None,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get_by_id(self, message_id: ObjectId) -> Optional[MessageDocument]:
        doc = await self.collection.find_one({"_id": message_id})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def get_messages_by_conversation(
        self,
        conversation_id: ObjectId,
        skip: int = 0,
        limit: int = 50,
    ) -> List[MessageDocument]:
        """Newest-first page of a conversation's messages."""
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        cur = self.collection.find({"conversation_id": conversation_id}).sort(sort).skip(skip).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def count_by_conversation(self, conversation_id: ObjectId) -> int:
        return await self.collection.count_documents({"conversation_id": conversation_id})

    async def get_latest(self, conversation_id: ObjectId) -> Optional[MessageDocument]:
        items = await self.get_messages_by_conversation(conversation_id, limit=1)
        return items[0] if items else None

    async def mark_read(self, message_id: ObjectId) -> Tuple[datetime, bool]:
        """Set the read receipt; returns ``(read_at, transitioned)``.

        ``transitioned`` is True only for the unread -> read flip. Already read
        messages get ``read_at`` overwritten.
        """
        read_at = datetime.now(timezone.utc)
        result = await self.collection.update_one(
            {"_id": message_id, "is_read": False},
            {"$set": {"is_read": True, "read_at": read_at, "updated_at": read_at}},
        )
        if result.modified_count:
            return read_at, True
        await self.collection.update_one(
            {"_id": message_id},
            {"$set": {"read_at": read_at, "updated_at": read_at}},
        )
        return read_at, False

    async def get_unread_for_reader(self, conversation_id: ObjectId, reader_id: str) -> List[MessageDocument]:
        cursor = self.collection.find(
            {"conversation_id": conversation_id, "sender_id": {"$ne": reader_id}, "is_read": False}
        ).sort("created_at", ASCENDING)
        items = await cursor.to_list(length=None)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def mark_many_read(self, message_ids: List[ObjectId]) -> datetime:
        read_at = datetime.now(timezone.utc)
        if message_ids:
            await self.collection.update_many(
                {"_id": {"$in": message_ids}, "is_read": False},
                {"$set": {"is_read": True, "read_at": read_at, "updated_at": read_at}},
            )
        return read_at

    async def count_unread(self, conversation_ids: List[ObjectId], user_id: str) -> int:
        if not conversation_ids:
            return 0
        return await self.collection.count_documents(
            {"conversation_id": {"$in": conversation_ids}, "sender_id": {"$ne": user_id}, "is_read": False}
        )

    async def delete_by_conversation(self, conversation_id: ObjectId) -> int:
        result = await self.collection.delete_many({"conversation_id": conversation_id})
        return result.deleted_count or 0
