from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from propchat.config import settings
from propchat.schemas.actor import Actor
from propchat.schemas.conversation import ConversationList, ConversationOut, FindOrCreateRequest, UnreadTotal
from propchat.schemas.message import MarkReadRequest, MarkReadResult, MessageCreate, MessageOut, MessagePage
from propchat.services.conversation_registry import ConversationRegistry, conversation_to_out
from propchat.services.message_ledger import MessageLedger
from propchat.services.view_projector import ViewProjector
from propchat.utils.dependencies import get_current_actor, get_ledger, get_projector, get_registry


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("/find-or-create", response_model=ConversationOut)
async def find_or_create_conversation(payload: FindOrCreateRequest, response: Response, actor: Actor = Depends(get_current_actor), registry: ConversationRegistry = Depends(get_registry)):
    convo, created = await registry.find_or_create(actor, payload.property_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return conversation_to_out(convo)


@router.get("/my", response_model=ConversationList)
async def my_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, actor: Actor = Depends(get_current_actor), projector: ViewProjector = Depends(get_projector)):
    return await projector.list_for_participant(actor, limit=limit, cursor=cursor)


@router.get("/unread-count", response_model=UnreadTotal)
async def unread_count(actor: Actor = Depends(get_current_actor), projector: ViewProjector = Depends(get_projector)):
    return UnreadTotal(total_unread=await projector.unread_total(actor))


@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_conversation(conversation_id: str, actor: Actor = Depends(get_current_actor), registry: ConversationRegistry = Depends(get_registry)):
    return conversation_to_out(await registry.authorize(actor, conversation_id))


@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, payload: MessageCreate, actor: Actor = Depends(get_current_actor), ledger: MessageLedger = Depends(get_ledger)):
    return await ledger.append(conversation_id, actor, payload.text)


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
    conversation_id: str,
    cursor: Optional[str] = None,
    before: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=settings.MESSAGE_PAGE_MAX),
    actor: Actor = Depends(get_current_actor),
    ledger: MessageLedger = Depends(get_ledger),
):
    return await ledger.list_messages(conversation_id, actor, after=cursor, before=before, limit=limit)


@router.post("/{conversation_id}/read", response_model=MarkReadResult)
async def mark_read(conversation_id: str, payload: Optional[MarkReadRequest] = None, actor: Actor = Depends(get_current_actor), ledger: MessageLedger = Depends(get_ledger)):
    upto = payload.upto_message_id if payload else None
    updated = await ledger.mark_read(conversation_id, actor, upto)
    return MarkReadResult(conversation_id=conversation_id, updated=updated)
