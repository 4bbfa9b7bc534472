from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from propchat.models.user import UserDocument


class UserRepository:
    """Read-only view over the marketplace users collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_display_names(self, user_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        # legacy users are keyed by string ids, newer ones by ObjectId
        lookup = ids + [ObjectId(i) for i in ids if ObjectId.is_valid(i)]
        names: Dict[str, Optional[str]] = {}
        users: List[UserDocument] = await self._collection.find({"_id": {"$in": lookup}}).to_list(length=None)
        for user in users:
            names[str(user["_id"])] = user.get("name") or user.get("full_name") or user.get("email")
        return names
