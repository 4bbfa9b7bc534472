from typing import Any, Optional, TypedDict


# Owned by the listings service; only the fields read here are declared.
class PropertyDocument(TypedDict, total=False):
    _id: Any
    title: Optional[str]
    contactId: Any
    owner: Any
    seller: Any
    postedBy: Any
    user: Any
    createdBy: Any
    ownerId: Any
    sellerId: Any
