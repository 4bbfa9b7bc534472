import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set

from propchat.schemas.events import NewMessageEvent
from propchat.schemas.message import MessageOut
from propchat.utils.logger import get_logger
from propchat.utils.realtime_bus import get_bus
from propchat.utils.websocket_manager import ADMIN_CHANNEL, ConnectionManager, user_channel


logger = get_logger(__name__)

# keeps fire-and-forget tasks referenced until they finish
_background_tasks: Set[asyncio.Task] = set()


class DeliveryNotifier:
    """
    Best-effort fan-out of new-message events.

    Nothing is retried or stored: the ledger is the source of truth and a
    client that missed an event re-fetches the conversation.
    """

    def __init__(self, manager: ConnectionManager, bus=None) -> None:
        self._manager = manager
        self._bus = bus

    async def _get_bus(self):
        if self._bus is None:
            self._bus = await get_bus()
        return self._bus

    async def publish(self, channels: Iterable[str], payload: str) -> None:
        channels = list(channels)
        bus = await self._get_bus()
        if getattr(bus, "enabled", False):
            for channel in channels:
                await bus.publish(channel, payload)
        else:
            await self._manager.send_to_channels(channels, payload)

    async def notify(self, conversation: Dict[str, Any], message: MessageOut) -> None:
        event = NewMessageEvent(conversation_id=message.conversation_id, message=message)
        channels: List[str] = [user_channel(pid) for pid in conversation["participant_ids"]]
        # support staff watching the inbox
        channels.append(ADMIN_CHANNEL)
        await self.publish(channels, event.model_dump_json())

    async def _notify_safely(self, conversation: Dict[str, Any], message: MessageOut) -> None:
        try:
            await self.notify(conversation, message)
        except Exception:
            logger.warning(f"Delivery of message {message.id} in {message.conversation_id} failed", exc_info=True)

    def notify_in_background(self, conversation: Dict[str, Any], message: MessageOut) -> Optional[asyncio.Task]:
        try:
            task = asyncio.get_running_loop().create_task(self._notify_safely(conversation, message))
        except RuntimeError:
            logger.warning(f"No running loop; skipped delivery of message {message.id}")
            return None
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task
