from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from stratix.models.user import UserDocument, UserType


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("email", ASCENDING)], unique=True)
        await self._collection.create_index([("user_type", ASCENDING)])

    async def create_user(self, email: str, name: str, user_type: UserType, avatar: Optional[str] = None) -> str:

        doc = {
            "email": email.lower().strip(),
            "name": name.strip(),
            "avatar": avatar,
            "user_type": user_type,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self._collection.insert_one(doc)
        return str(result.inserted_id)

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:

        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        user = await self._collection.find_one({"_id": oid})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user
