"""Push-channel envelopes.

Server events are typed models serialized with model_dump_json; nothing on the
push path is an untyped event-name string.
"""
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel

from propchat.schemas.message import MessageOut


class NewMessageEvent(BaseModel):

    type: Literal["message:new"] = "message:new"
    conversation_id: str
    message: MessageOut


class TypingEvent(BaseModel):

    type: Literal["typing_start", "typing_stop"]
    conversation_id: str
    user_id: str


class WsInbound(BaseModel):
    """Client -> server. type: ping | join | leave | typing_start | typing_stop | message"""

    type: str
    conversation_id: Optional[str] = None
    text: Optional[str] = None
    client_message_id: Optional[str] = None


class WsOutbound(BaseModel):
    """Server -> client. type: connected | pong | joined | left | ack | error"""

    type: str
    data: Dict[str, Any] = {}


class PresenceOut(BaseModel):

    user_id: str
    online: bool
