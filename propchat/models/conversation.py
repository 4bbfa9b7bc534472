from datetime import datetime
from typing import Any, Dict, List, Literal, TypedDict

from bson import ObjectId


ConversationStatus = Literal["open", "pending", "closed"]


class ConversationDocument(TypedDict, total=False):
    _id: ObjectId
    property_id: str
    # sorted pair; participant_key = "a|b" is the dedup key together with property_id
    participant_ids: List[str]
    participant_key: str
    initiator_id: str
    counterpart_id: str
    status: ConversationStatus
    created_at: datetime
    last_message_at: datetime
    # present only while a writer holds the append section
    append_lease: Dict[str, Any]
