from typing import Any, Dict, Tuple, get_args

from propchat.models.conversation import ConversationStatus
from propchat.repositories.conversation_repository import ConversationRepository, participant_key
from propchat.repositories.property_repository import PropertyRepository
from propchat.schemas.actor import Actor
from propchat.schemas.conversation import ConversationOut
from propchat.utils.cursor import as_aware, parse_object_id, utcnow
from propchat.utils.exceptions import (
    ForbiddenError,
    InvalidInputError,
    InvalidOperationError,
    NotFoundError,
    TransientStorageConflict,
)
from propchat.utils.logger import get_logger


logger = get_logger(__name__)

STATUSES = get_args(ConversationStatus)


def conversation_to_out(doc: Dict[str, Any]) -> ConversationOut:
    return ConversationOut(
        id=str(doc["_id"]),
        property_id=doc["property_id"],
        participant_ids=list(doc["participant_ids"]),
        initiator_id=doc["initiator_id"],
        counterpart_id=doc["counterpart_id"],
        status=doc.get("status", "open"),
        created_at=as_aware(doc["created_at"]),
        last_message_at=as_aware(doc["last_message_at"]),
    )


class ConversationRegistry:
    """Owns conversation identity: one conversation per (property, participant pair)."""

    def __init__(self, conversation_repo: ConversationRepository, property_repo: PropertyRepository) -> None:
        self._conversation_repo = conversation_repo
        self._property_repo = property_repo

    async def find_or_create(self, actor: Actor, property_id: str) -> Tuple[Dict[str, Any], bool]:
        """
        Return the conversation between `actor` and the property's contact,
        creating it on first contact. The bool is True only for the call that
        actually inserted the row.

        Two racing callers both pass the existence check; the unique index lets
        exactly one insert through and the other re-reads the winner.
        """
        property_oid = parse_object_id(property_id, field="property_id")
        counterpart_id = await self._property_repo.get_contact_id(property_oid)
        if not counterpart_id:
            raise NotFoundError("Property not found", details={"property_id": property_id})
        if counterpart_id == actor.id:
            raise InvalidOperationError("Cannot create conversation with yourself")

        property_id = str(property_oid)
        key = participant_key(actor.id, counterpart_id)
        existing = await self._conversation_repo.find_by_pair(property_id, key)
        if existing:
            return existing, False

        now = utcnow()
        doc: Dict[str, Any] = {
            "property_id": property_id,
            "participant_ids": sorted([actor.id, counterpart_id]),
            "participant_key": key,
            "initiator_id": actor.id,
            "counterpart_id": counterpart_id,
            "status": "open",
            "created_at": now,
            "last_message_at": now,
        }
        try:
            created = await self._conversation_repo.insert(doc)
        except TransientStorageConflict as conflict:
            logger.info(f"Conversation create race lost for {conflict.key}; returning existing row")
            winner = await self._conversation_repo.find_by_pair(property_id, key)
            if winner is None:
                # the unique index said it exists; a missing row means the store is inconsistent
                raise RuntimeError(f"Conversation for {conflict.key} vanished after duplicate-key error")
            return winner, False

        logger.info(f"Conversation {created['_id']} created for property {property_id} ({actor.id} -> {counterpart_id})")
        return created, True

    async def authorize(self, actor: Actor, conversation_id: str) -> Dict[str, Any]:
        oid = parse_object_id(conversation_id, field="conversation_id")
        convo = await self._conversation_repo.get_by_id(oid)
        if actor.is_admin:
            if convo is None:
                raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})
            return convo
        # same answer for "missing" and "not yours"
        if convo is None or actor.id not in convo.get("participant_ids", []):
            raise ForbiddenError()
        return convo

    async def set_status(self, actor: Actor, conversation_id: str, status: str) -> Dict[str, Any]:
        if not actor.is_admin:
            raise ForbiddenError()
        if status not in STATUSES:
            raise InvalidInputError(f"Invalid status. Must be one of: {', '.join(STATUSES)}", field="status")
        oid = parse_object_id(conversation_id, field="conversation_id")
        updated = await self._conversation_repo.set_status(oid, status)
        if updated is None:
            raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})
        logger.info(f"Conversation {conversation_id} status set to {status} by {actor.id}")
        return updated
