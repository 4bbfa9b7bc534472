from typing import Dict, Iterable, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from propchat.models.property import PropertyDocument


# Listings written by different versions of the marketplace keep the contact
# under different keys; first present wins.
CONTACT_FIELDS = ("contactId", "owner", "seller", "postedBy", "user", "createdBy", "ownerId", "sellerId")


def resolve_contact_id(prop: PropertyDocument) -> Optional[str]:
    for field in CONTACT_FIELDS:
        value = prop.get(field)
        if isinstance(value, dict):
            value = value.get("_id") or value.get("id")
        if value:
            return str(value)
    return None


class PropertyRepository:
    """Read-only lookup into the listings collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("properties")

    async def get_property(self, property_id: ObjectId) -> Optional[PropertyDocument]:
        return await self._collection.find_one({"_id": property_id})

    async def get_contact_id(self, property_id: ObjectId) -> Optional[str]:
        prop = await self.get_property(property_id)
        if not prop:
            return None
        return resolve_contact_id(prop)

    async def get_titles(self, property_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        oids = [ObjectId(p) for p in set(property_ids) if ObjectId.is_valid(p)]
        if not oids:
            return {}
        titles: Dict[str, Optional[str]] = {}
        props = await self._collection.find({"_id": {"$in": oids}}, {"title": 1}).to_list(length=None)
        for prop in props:
            titles[str(prop["_id"])] = prop.get("title")
        return titles
