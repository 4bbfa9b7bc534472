from motor.motor_asyncio import AsyncIOMotorDatabase

from propchat.repositories.conversation_repository import ConversationRepository
from propchat.repositories.message_repository import MessageRepository


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
