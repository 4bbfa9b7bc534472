from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import ValidationError

from propchat.config import settings
from propchat.schemas.actor import Actor, Credential, Role, TokenPayload
from propchat.utils.exceptions import UnauthenticatedError


def create_access_token(user_id: str, role: Role | str = Role.BUYER, name: Optional[str] = None, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {"sub": user_id, "role": Role(role).value, "exp": expire}
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def credential_from_header(authorization: Optional[str]) -> Credential:
    if not authorization:
        raise UnauthenticatedError("Access token required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("Bearer token required")
    return Credential(token=token.strip())


def resolve_actor(credential: Credential) -> Actor:
    """Identity & auth gate: credential in, actor out."""
    try:
        payload = TokenPayload(**decode_access_token(credential.token))
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token expired")
    except (jwt.InvalidTokenError, ValidationError):
        raise UnauthenticatedError("Invalid token")
    return Actor(id=payload.sub, role=payload.role, name=payload.name)
