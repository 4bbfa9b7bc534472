import asyncio
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from propchat.config import settings
from propchat.schemas.actor import Credential
from propchat.schemas.events import TypingEvent, WsInbound, WsOutbound
from propchat.services.conversation_registry import ConversationRegistry
from propchat.services.delivery_notifier import DeliveryNotifier
from propchat.services.message_ledger import MessageLedger
from propchat.utils.dependencies import get_ledger, get_notifier, get_registry
from propchat.utils.exceptions import ChatError, InvalidInputError, UnauthenticatedError
from propchat.utils.logger import get_logger
from propchat.utils.realtime_bus import get_bus
from propchat.utils.security import resolve_actor
from propchat.utils.websocket_manager import Session, conversation_channel, get_connection_manager


logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])


class SessionFeeds:
    """
    Channel subscriptions of one session.

    Channels are always registered with the local ConnectionManager; with Redis
    enabled each channel also gets a pub/sub subscription that forwards into
    the socket, since publishers then go through the bus only.
    """

    def __init__(self, session: Session, bus) -> None:
        self._session = session
        self._bus = bus
        self._manager = get_connection_manager()
        self._subscriptions: Dict[str, Tuple[Any, asyncio.Task]] = {}

    async def add(self, channel: str) -> None:
        self._manager.subscribe(self._session, channel)
        if getattr(self._bus, "enabled", False) and channel not in self._subscriptions:
            subscriber = await self._bus.subscribe(channel, self._session.send_text)
            self._subscriptions[channel] = (subscriber, asyncio.create_task(subscriber.run()))

    async def remove(self, channel: str) -> None:
        self._manager.unsubscribe(self._session, channel)
        entry = self._subscriptions.pop(channel, None)
        if entry is not None:
            subscriber, task = entry
            await subscriber.cancel()
            task.cancel()

    async def close(self) -> None:
        for channel in list(self._subscriptions):
            await self.remove(channel)


async def _presence_heartbeat(bus, user_id: str) -> None:
    ttl = settings.PRESENCE_TTL_SECONDS
    while True:
        try:
            await bus.set_presence(user_id, ttl_seconds=ttl)
        except Exception:
            logger.warning(f"Presence refresh for {user_id} failed", exc_info=True)
        await asyncio.sleep(max(ttl // 2, 1))


async def _emit(session: Session, event_type: str, **data) -> None:
    await session.send_text(WsOutbound(type=event_type, data=data).model_dump_json())


def _require_conversation(event: WsInbound) -> str:
    if not event.conversation_id:
        raise InvalidInputError("conversation_id is required", field="conversation_id")
    return event.conversation_id


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    registry: ConversationRegistry = Depends(get_registry),
    ledger: MessageLedger = Depends(get_ledger),
    notifier: DeliveryNotifier = Depends(get_notifier),
):
    # ?token=<jwt>
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        actor = resolve_actor(Credential(token=token))
    except UnauthenticatedError:
        await websocket.close(code=4401)
        return

    manager = get_connection_manager()
    session = await manager.connect(websocket, actor)
    bus = await get_bus()
    feeds = SessionFeeds(session, bus)
    for channel in list(session.channels):
        await feeds.add(channel)
    heartbeat_task = None
    if getattr(bus, "enabled", False):
        heartbeat_task = asyncio.create_task(_presence_heartbeat(bus, actor.id))

    await _emit(session, "connected", user_id=actor.id, role=actor.role.value, session_id=session.id)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            raw = frame.get("text")
            if raw is None:
                await _emit(session, "error", code="INVALID_INPUT", message="Binary frames are not supported")
                continue
            try:
                event = WsInbound.model_validate_json(raw)
            except ValidationError:
                await _emit(session, "error", code="INVALID_INPUT", message="Invalid event payload")
                continue

            try:
                if event.type == "ping":
                    await _emit(session, "pong")

                elif event.type == "join":
                    conversation_id = _require_conversation(event)
                    await registry.authorize(actor, conversation_id)
                    await feeds.add(conversation_channel(conversation_id))
                    await _emit(session, "joined", conversation_id=conversation_id)

                elif event.type == "leave":
                    conversation_id = _require_conversation(event)
                    await feeds.remove(conversation_channel(conversation_id))
                    await _emit(session, "left", conversation_id=conversation_id)

                elif event.type in ("typing_start", "typing_stop"):
                    # goes to whoever joined the room, the typist included
                    conversation_id = _require_conversation(event)
                    await registry.authorize(actor, conversation_id)
                    typing = TypingEvent(type=event.type, conversation_id=conversation_id, user_id=actor.id)
                    await notifier.publish([conversation_channel(conversation_id)], typing.model_dump_json())

                elif event.type == "message":
                    conversation_id = _require_conversation(event)
                    message = await ledger.append(conversation_id, actor, event.text or "")
                    await _emit(
                        session,
                        "ack",
                        client_message_id=event.client_message_id,
                        message=message.model_dump(mode="json"),
                    )

                else:
                    await _emit(session, "error", code="INVALID_INPUT", message=f"Unknown event type: {event.type}")

            except ChatError as exc:
                await _emit(
                    session,
                    "error",
                    code=exc.code,
                    message=exc.message,
                    conversation_id=event.conversation_id,
                    client_message_id=event.client_message_id,
                )
    except WebSocketDisconnect:
        pass
    finally:
        if heartbeat_task is not None:
            heartbeat_task.cancel()
        await feeds.close()
        manager.disconnect(session)
