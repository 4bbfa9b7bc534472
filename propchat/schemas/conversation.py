from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from propchat.models.conversation import ConversationStatus


class FindOrCreateRequest(BaseModel):

    property_id: str = Field(min_length=1, validation_alias=AliasChoices("property_id", "propertyId"))


class ConversationOut(BaseModel):
    """Conversation resource; serialized with camelCase keys (`propertyId`, `participantIds`, `createdAt`)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    property_id: str
    participant_ids: List[str]
    initiator_id: str
    counterpart_id: str
    status: ConversationStatus = "open"
    created_at: datetime
    last_message_at: datetime


class PropertyRef(BaseModel):

    id: str
    title: Optional[str] = None


class UserRef(BaseModel):

    id: str
    name: Optional[str] = None


class LastMessagePreview(BaseModel):

    id: str
    sender_id: str
    preview: str
    created_at: datetime


class ConversationSummary(BaseModel):

    id: str
    property: PropertyRef
    counterpart: Optional[UserRef] = None
    participants: List[UserRef]
    status: ConversationStatus = "open"
    created_at: datetime
    last_message_at: datetime
    last_message: Optional[LastMessagePreview] = None
    unread_count: int = 0
    message_count: Optional[int] = None


class ConversationList(BaseModel):

    items: List[ConversationSummary]
    next_cursor: Optional[str] = None


class AdminInboxFilter(BaseModel):

    property_id: Optional[str] = None
    participant_id: Optional[str] = None
    status: Optional[ConversationStatus] = None
    unresolved_only: bool = False


class AdminInboxPage(BaseModel):

    items: List[ConversationSummary]
    total: int
    page: int
    total_pages: int


class AdminStats(BaseModel):

    total_conversations: int
    conversations_today: int
    conversations_this_week: int
    active_conversations: int


class StatusUpdate(BaseModel):

    status: ConversationStatus


class UnreadTotal(BaseModel):

    total_unread: int
