from typing import Optional

from fastapi import APIRouter, Depends, Query

from propchat.schemas.actor import Actor
from propchat.schemas.conversation import AdminInboxFilter, AdminInboxPage, AdminStats, ConversationOut, ConversationStatus, StatusUpdate
from propchat.services.conversation_registry import ConversationRegistry, conversation_to_out
from propchat.services.view_projector import ViewProjector
from propchat.utils.dependencies import get_projector, get_registry, require_admin


router = APIRouter(prefix="/admin/conversations", tags=["admin"])


@router.get("", response_model=AdminInboxPage)
async def admin_inbox(
    property_id: Optional[str] = None,
    participant_id: Optional[str] = None,
    status: Optional[ConversationStatus] = None,
    unresolved_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Actor = Depends(require_admin),
    projector: ViewProjector = Depends(get_projector),
):
    inbox_filter = AdminInboxFilter(property_id=property_id, participant_id=participant_id, status=status, unresolved_only=unresolved_only)
    return await projector.list_for_admin_inbox(admin, inbox_filter, page=page, limit=limit)


@router.get("/stats", response_model=AdminStats)
async def admin_stats(admin: Actor = Depends(require_admin), projector: ViewProjector = Depends(get_projector)):
    return await projector.admin_stats(admin)


@router.put("/{conversation_id}/status", response_model=ConversationOut)
async def update_status(conversation_id: str, payload: StatusUpdate, admin: Actor = Depends(require_admin), registry: ConversationRegistry = Depends(get_registry)):
    return conversation_to_out(await registry.set_status(admin, conversation_id, payload.status))
