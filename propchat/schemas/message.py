from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class MessageCreate(BaseModel):

    text: str


class ReadReceipt(BaseModel):

    user_id: str
    read_at: datetime


class MessageOut(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    sender_role: str
    body: str
    created_at: datetime
    read_by: List[ReadReceipt] = []


class MessagePage(BaseModel):

    items: List[MessageOut]
    # newest item of the page (continue forward) / oldest item (continue backwards)
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None
    has_more: bool = False


class MarkReadRequest(BaseModel):

    upto_message_id: Optional[str] = None


class MarkReadResult(BaseModel):

    conversation_id: str
    updated: int
