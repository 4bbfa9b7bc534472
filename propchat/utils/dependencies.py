from typing import Optional

from fastapi import Depends, Header
from motor.motor_asyncio import AsyncIOMotorDatabase

from propchat.database.connection import mongo_db_dependency
from propchat.repositories.conversation_repository import ConversationRepository
from propchat.repositories.message_repository import MessageRepository
from propchat.repositories.property_repository import PropertyRepository
from propchat.repositories.user_repository import UserRepository
from propchat.schemas.actor import Actor
from propchat.services.conversation_registry import ConversationRegistry
from propchat.services.delivery_notifier import DeliveryNotifier
from propchat.services.message_ledger import MessageLedger
from propchat.services.view_projector import ViewProjector
from propchat.utils.exceptions import ForbiddenError
from propchat.utils.rate_limit import get_message_rate_limiter
from propchat.utils.security import credential_from_header, resolve_actor
from propchat.utils.websocket_manager import get_connection_manager


async def get_current_actor(authorization: Optional[str] = Header(default=None)) -> Actor:
    # only the Authorization header; no cookie or alternate-header fallbacks
    return resolve_actor(credential_from_header(authorization))


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise ForbiddenError("Admin access required")
    return actor


def get_notifier() -> DeliveryNotifier:
    return DeliveryNotifier(get_connection_manager())


def get_registry(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> ConversationRegistry:
    return ConversationRegistry(ConversationRepository(db), PropertyRepository(db))


def get_ledger(
    db: AsyncIOMotorDatabase = Depends(mongo_db_dependency),
    registry: ConversationRegistry = Depends(get_registry),
    notifier: DeliveryNotifier = Depends(get_notifier),
) -> MessageLedger:
    return MessageLedger(
        MessageRepository(db),
        ConversationRepository(db),
        registry,
        notifier=notifier,
        rate_limiter=get_message_rate_limiter(),
    )


def get_projector(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> ViewProjector:
    return ViewProjector(ConversationRepository(db), MessageRepository(db), UserRepository(db), PropertyRepository(db))
