from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from propchat.models.conversation import ConversationDocument
from propchat.utils.cursor import decode_cursor, encode_cursor
from propchat.utils.exceptions import TransientStorageConflict


def participant_key(user_a: str, user_b: str) -> str:
    return "|".join(sorted([user_a, user_b]))


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        # dedup key: one conversation per (property, unordered pair)
        await self.collection.create_index(
            [("property_id", ASCENDING), ("participant_key", ASCENDING)],
            unique=True,
            name="uniq_property_pair",
        )
        await self.collection.create_index([("participant_ids", ASCENDING), ("last_message_at", DESCENDING), ("_id", DESCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING), ("_id", DESCENDING)])
        await self.collection.create_index([("created_at", DESCENDING)])

    async def get_by_id(self, conversation_id: ObjectId) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    async def find_by_pair(self, property_id: str, key: str) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"property_id": property_id, "participant_key": key})

    async def insert(self, doc: ConversationDocument) -> ConversationDocument:
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise TransientStorageConflict({"property_id": doc["property_id"], "participant_key": doc["participant_key"]})
        doc["_id"] = result.inserted_id
        return doc

    async def advance_last_message_at(self, conversation_id: ObjectId, ts: datetime) -> bool:
        # only ever moves forward
        result = await self.collection.update_one(
            {"_id": conversation_id, "last_message_at": {"$lt": ts}},
            {"$set": {"last_message_at": ts}},
        )
        return bool(result.modified_count)

    async def claim_append_lease(self, conversation_id: ObjectId, token: str, now: datetime, ttl_seconds: int) -> Optional[ConversationDocument]:
        """Take the append lease if it is free or expired; returns the leased document or None."""
        return await self.collection.find_one_and_update(
            {
                "_id": conversation_id,
                "$or": [{"append_lease": None}, {"append_lease.expires_at": {"$lte": now}}],
            },
            {"$set": {"append_lease": {"token": token, "expires_at": now + timedelta(seconds=ttl_seconds)}}},
            return_document=ReturnDocument.AFTER,
        )

    async def release_append_lease(self, conversation_id: ObjectId, token: str) -> None:
        await self.collection.update_one(
            {"_id": conversation_id, "append_lease.token": token},
            {"$unset": {"append_lease": ""}},
        )

    async def set_status(self, conversation_id: ObjectId, status: str) -> Optional[ConversationDocument]:
        return await self.collection.find_one_and_update(
            {"_id": conversation_id},
            {"$set": {"status": status}},
            return_document=ReturnDocument.AFTER,
        )

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[ConversationDocument], Optional[str]]:
        query: Dict[str, Any] = {"participant_ids": user_id}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            ts, oid = decode_cursor(cursor)
            query["$or"] = [
                {"last_message_at": {"$lt": ts}},
                {"last_message_at": ts, "_id": {"$lt": oid}},
            ]

        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor_db.to_list(length=limit)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = encode_cursor(last["last_message_at"], last["_id"])
        return items, next_cursor

    async def ids_for_user(self, user_id: str) -> List[ObjectId]:
        docs = await self.collection.find({"participant_ids": user_id}, {"_id": 1}).to_list(length=None)
        return [doc["_id"] for doc in docs]

    @staticmethod
    def inbox_query(
        property_id: Optional[str] = None,
        participant_id: Optional[str] = None,
        status: Optional[str] = None,
        unresolved_only: bool = False,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if property_id:
            query["property_id"] = property_id
        if participant_id:
            query["participant_ids"] = participant_id
        if status:
            query["status"] = status
        elif unresolved_only:
            query["status"] = {"$ne": "closed"}
        return query

    async def list_all(self, query: Dict[str, Any], skip: int = 0, limit: int = 20) -> List[ConversationDocument]:
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        cur = self.collection.find(query).sort(sort).skip(skip).limit(limit)
        return await cur.to_list(length=limit)

    async def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return await self.collection.count_documents(query or {})
