from fastapi import APIRouter, Depends

from propchat.schemas.actor import Actor
from propchat.schemas.events import PresenceOut
from propchat.utils.dependencies import get_current_actor
from propchat.utils.realtime_bus import get_bus
from propchat.utils.websocket_manager import get_connection_manager


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}", response_model=PresenceOut)
async def presence(user_id: str, actor: Actor = Depends(get_current_actor)):
    """
    Online state from the Redis presence key when Redis is configured, else
    from the WebSocket sessions held by this process.
    """
    bus = await get_bus()
    online = await bus.is_online(user_id)
    if online is None:
        online = get_connection_manager().is_online(user_id)
    return PresenceOut(user_id=user_id, online=online)
