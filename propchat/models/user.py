from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    name: Optional[str]
    full_name: Optional[str]
