import uuid
from enum import Enum
from typing import Dict, Iterable, Set

from fastapi import WebSocket

from propchat.schemas.actor import Actor
from propchat.utils.logger import get_logger


logger = get_logger(__name__)

ADMIN_CHANNEL = "admin"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class SessionState(str, Enum):

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Session:
    """One WebSocket connection of one actor. CONNECTED -> DISCONNECTED, never back."""

    def __init__(self, websocket: WebSocket, actor: Actor) -> None:
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.actor = actor
        self.state = SessionState.CONNECTED
        self.channels: Set[str] = set()

    async def send_text(self, message: str) -> bool:
        if self.state is not SessionState.CONNECTED:
            return False
        try:
            await self.websocket.send_text(message)
            return True
        except Exception:
            logger.info(f"Send to session {self.id} ({self.actor.id}) failed; marking disconnected")
            self.state = SessionState.DISCONNECTED
            return False


class ConnectionManager:

    def __init__(self) -> None:
        self.channels: Dict[str, Set[Session]] = {}

    async def connect(self, websocket: WebSocket, actor: Actor) -> Session:
        await websocket.accept()
        session = Session(websocket, actor)
        self.subscribe(session, user_channel(actor.id))
        if actor.is_admin:
            self.subscribe(session, ADMIN_CHANNEL)
        logger.info(f"Session {session.id} connected for {actor.id} ({actor.role.value})")
        return session

    def subscribe(self, session: Session, channel: str) -> None:
        self.channels.setdefault(channel, set()).add(session)
        session.channels.add(channel)

    def unsubscribe(self, session: Session, channel: str) -> None:
        members = self.channels.get(channel)
        if members is not None:
            members.discard(session)
            if not members:
                del self.channels[channel]
        session.channels.discard(channel)

    def disconnect(self, session: Session) -> None:
        session.state = SessionState.DISCONNECTED
        for channel in list(session.channels):
            self.unsubscribe(session, channel)
        logger.info(f"Session {session.id} disconnected for {session.actor.id}")

    def is_online(self, user_id: str) -> bool:
        return any(s.state is SessionState.CONNECTED for s in self.channels.get(user_channel(user_id), ()))

    async def send_to_channels(self, channels: Iterable[str], message: str) -> int:
        """Deliver once per connected session across all channels; returns deliveries."""
        targets: Set[Session] = set()
        for channel in channels:
            targets.update(self.channels.get(channel, ()))
        delivered = 0
        for session in targets:
            if await session.send_text(message):
                delivered += 1
            elif session.state is SessionState.DISCONNECTED:
                self.disconnect(session)
        return delivered


_manager = ConnectionManager()


def get_connection_manager() -> ConnectionManager:
    return _manager
