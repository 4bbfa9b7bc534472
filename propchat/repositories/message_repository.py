from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from propchat.models.message import MessageDocument


OrderKey = Tuple[datetime, ObjectId]


def _after(key: OrderKey) -> Dict[str, Any]:
    ts, oid = key
    return {"$or": [{"created_at": {"$gt": ts}}, {"created_at": ts, "_id": {"$gt": oid}}]}


def _before(key: OrderKey) -> Dict[str, Any]:
    ts, oid = key
    return {"$or": [{"created_at": {"$lt": ts}}, {"created_at": ts, "_id": {"$lt": oid}}]}


def _at_or_before(key: OrderKey) -> Dict[str, Any]:
    ts, oid = key
    return {"$or": [{"created_at": {"$lt": ts}}, {"created_at": ts, "_id": {"$lte": oid}}]}


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)])
        await self.collection.create_index([("conversation_id", ASCENDING), ("reader_ids", ASCENDING)])

    async def save_message(
        self,
        conversation_id: ObjectId,
        sender_id: str,
        sender_role: str,
        body: str,
        created_at: datetime,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "_id": ObjectId(),
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_role": sender_role,
            "body": body,
            "created_at": created_at,
            # the sender has read their own message
            "read_by": [{"user_id": sender_id, "read_at": created_at}],
            "reader_ids": [sender_id],
        }
        await self.collection.insert_one(doc)
        return doc

    async def get_in_conversation(self, conversation_id: ObjectId, message_id: ObjectId) -> Optional[MessageDocument]:
        return await self.collection.find_one({"_id": message_id, "conversation_id": conversation_id})

    async def page_after(self, conversation_id: ObjectId, after: Optional[OrderKey], limit: int) -> Tuple[List[MessageDocument], bool]:
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        if after:
            query.update(_after(after))
        sort = [("created_at", ASCENDING), ("_id", ASCENDING)]
        items = await self.collection.find(query).sort(sort).limit(limit + 1).to_list(length=limit + 1)
        return items[:limit], len(items) > limit

    async def page_before(self, conversation_id: ObjectId, before: OrderKey, limit: int) -> Tuple[List[MessageDocument], bool]:
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        query.update(_before(before))
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        items = await self.collection.find(query).sort(sort).limit(limit + 1).to_list(length=limit + 1)
        # ascending chronological order for the client
        return list(reversed(items[:limit])), len(items) > limit

    async def latest(self, conversation_id: ObjectId) -> Optional[MessageDocument]:
        cur = self.collection.find({"conversation_id": conversation_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(1)
        items = await cur.to_list(length=1)
        return items[0] if items else None

    async def count(self, conversation_id: ObjectId) -> int:
        return await self.collection.count_documents({"conversation_id": conversation_id})

    async def count_unread(self, conversation_id: ObjectId, user_id: str) -> int:
        return await self.collection.count_documents({"conversation_id": conversation_id, "reader_ids": {"$ne": user_id}})

    async def count_unread_in(self, conversation_ids: List[ObjectId], user_id: str) -> int:
        if not conversation_ids:
            return 0
        return await self.collection.count_documents({"conversation_id": {"$in": conversation_ids}, "reader_ids": {"$ne": user_id}})

    async def mark_read(self, conversation_id: ObjectId, user_id: str, upto: OrderKey, read_at: datetime) -> int:
        query: Dict[str, Any] = {"conversation_id": conversation_id, "reader_ids": {"$ne": user_id}}
        query.update(_at_or_before(upto))
        result = await self.collection.update_many(
            query,
            {
                "$push": {"read_by": {"user_id": user_id, "read_at": read_at}},
                "$addToSet": {"reader_ids": user_id},
            },
        )
        return result.modified_count or 0
