"""
Shared fixtures for the conversation service tests.

MongoDB is replaced by mongomock-motor; no server, Redis or network is needed.
Unit tests drive the services directly, integration tests go through the
FastAPI app with TestClient.
"""

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from propchat.config import settings
from propchat.database.connection import mongo_db_dependency
from propchat.database.indexes import ensure_indexes
from propchat.repositories.conversation_repository import ConversationRepository
from propchat.repositories.message_repository import MessageRepository
from propchat.repositories.property_repository import PropertyRepository
from propchat.repositories.user_repository import UserRepository
from propchat.schemas.actor import Actor, Role
from propchat.services.conversation_registry import ConversationRegistry
from propchat.services.message_ledger import MessageLedger
from propchat.services.view_projector import ViewProjector
from propchat.utils import rate_limit, realtime_bus
from propchat.utils.rate_limit import MessageRateLimiter, get_message_rate_limiter
from propchat.utils.security import create_access_token
from propchat.utils.websocket_manager import get_connection_manager


BUYER = Actor(id="buyer-1", role=Role.BUYER, name="Bea Buyer")
SELLER = Actor(id="seller-1", role=Role.SELLER, name="Sam Seller")
OTHER_BUYER = Actor(id="buyer-3", role=Role.BUYER, name="Olly Other")
AGENT = Actor(id="agent-1", role=Role.AGENT, name="Ada Agent")
ADMIN = Actor(id="admin-1", role=Role.ADMIN, name="Support")

# owner under "owner"
FLAT_ID = ObjectId("65a000000000000000000001")
# contact nested under "seller"
HOUSE_ID = ObjectId("65a000000000000000000002")
# no contact at all
ORPHAN_ID = ObjectId("65a000000000000000000003")
# listed by an agent under "contactId"
LOFT_ID = ObjectId("65a000000000000000000004")


async def seed(database) -> None:
    await ensure_indexes(database)
    await database.users.insert_many([
        {"_id": BUYER.id, "name": BUYER.name},
        {"_id": SELLER.id, "full_name": SELLER.name},
        {"_id": OTHER_BUYER.id, "email": "olly@example.com"},
        {"_id": AGENT.id, "name": AGENT.name},
    ])
    await database.properties.insert_many([
        {"_id": FLAT_ID, "title": "2BR flat near the park", "owner": SELLER.id},
        {"_id": HOUSE_ID, "title": "Family house", "seller": {"_id": SELLER.id}},
        {"_id": ORPHAN_ID, "title": "Listing without contact"},
        {"_id": LOFT_ID, "title": "Loft", "contactId": AGENT.id, "owner": SELLER.id},
    ])


def token_for(actor: Actor) -> str:
    return create_access_token(actor.id, actor.role, actor.name)


def auth_headers(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {token_for(actor)}"}


class RecordingNotifier:
    """Stands in for DeliveryNotifier; keeps what would have been pushed."""

    def __init__(self):
        self.sent = []

    def notify_in_background(self, conversation, message):
        self.sent.append((conversation["_id"], message))
        return None


@pytest.fixture(autouse=True)
def isolated_realtime(monkeypatch):
    """In-process delivery only, fresh limiter and no leftover sessions."""
    monkeypatch.setattr(settings, "REDIS_URL", None)
    monkeypatch.setattr(realtime_bus, "_bus", None)
    monkeypatch.setattr(rate_limit, "_limiter", None)
    get_message_rate_limiter().reset()
    get_connection_manager().channels.clear()
    yield
    get_message_rate_limiter().reset()
    get_connection_manager().channels.clear()


@pytest.fixture
def mongo():
    return AsyncMongoMockClient()["propchat_test"]


@pytest.fixture
async def db(mongo):
    await seed(mongo)
    return mongo


@pytest.fixture
def registry(db):
    return ConversationRegistry(ConversationRepository(db), PropertyRepository(db))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ledger(db, registry, notifier):
    return MessageLedger(
        MessageRepository(db),
        ConversationRepository(db),
        registry,
        notifier=notifier,
        rate_limiter=MessageRateLimiter(1000, 30),
    )


@pytest.fixture
def projector(db):
    return ViewProjector(ConversationRepository(db), MessageRepository(db), UserRepository(db), PropertyRepository(db))


@pytest.fixture
def app_client(mongo, monkeypatch):
    """TestClient over the real app, wired to the in-memory database."""
    from propchat import main

    async def _noop():
        return None

    monkeypatch.setattr(main, "connect_to_mongo", _noop)
    monkeypatch.setattr(main, "close_mongo_connection", _noop)
    monkeypatch.setattr(main, "get_database", lambda: mongo)
    main.app.dependency_overrides[mongo_db_dependency] = lambda: mongo

    with TestClient(main.app) as client:
        client.portal.call(seed, mongo)
        yield client

    main.app.dependency_overrides.clear()
