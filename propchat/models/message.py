from datetime import datetime
from typing import List, TypedDict

from bson import ObjectId


class ReadReceiptDocument(TypedDict):
    user_id: str
    read_at: datetime


class MessageDocument(TypedDict, total=False):
    _id: ObjectId
    conversation_id: ObjectId
    sender_id: str
    sender_role: str
    body: str
    created_at: datetime
    # append-only receipts
    read_by: List[ReadReceiptDocument]
    reader_ids: List[str]
