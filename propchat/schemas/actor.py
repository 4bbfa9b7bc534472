from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Role(str, Enum):

    BUYER = "buyer"
    SELLER = "seller"
    AGENT = "agent"
    ADMIN = "admin"


class Credential(BaseModel):
    """Bearer token handed to the core by the boundary layer."""

    token: str

    def as_header(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


class Actor(BaseModel):

    id: str
    role: Role
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class TokenPayload(BaseModel):

    sub: str
    role: Role = Role.BUYER
    name: Optional[str] = None
    exp: int
