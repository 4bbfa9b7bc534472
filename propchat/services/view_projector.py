import asyncio
import math
from datetime import timedelta
from typing import Any, Dict, List, Optional

from propchat.config import settings
from propchat.repositories.conversation_repository import ConversationRepository
from propchat.repositories.message_repository import MessageRepository
from propchat.repositories.property_repository import PropertyRepository
from propchat.repositories.user_repository import UserRepository
from propchat.schemas.actor import Actor
from propchat.schemas.conversation import (
    AdminInboxFilter,
    AdminInboxPage,
    AdminStats,
    ConversationList,
    ConversationSummary,
    LastMessagePreview,
    PropertyRef,
    UserRef,
)
from propchat.utils.cursor import as_aware, utcnow
from propchat.utils.exceptions import ForbiddenError
from propchat.utils.text import make_preview


class ViewProjector:
    """
    Read-only conversation lists per role.

    Everything is recomputed from the conversations and messages collections
    on each call; there are no stored counters or previews to keep in sync.
    """

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        user_repo: UserRepository,
        property_repo: PropertyRepository,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._user_repo = user_repo
        self._property_repo = property_repo

    async def list_for_participant(self, actor: Actor, limit: int = 20, cursor: Optional[str] = None) -> ConversationList:
        docs, next_cursor = await self._conversation_repo.list_for_user(actor.id, limit=limit, cursor=cursor)
        items = await self._summarize(docs, actor)
        return ConversationList(items=items, next_cursor=next_cursor)

    async def list_for_admin_inbox(
        self,
        actor: Actor,
        inbox_filter: Optional[AdminInboxFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> AdminInboxPage:
        if not actor.is_admin:
            raise ForbiddenError()
        inbox_filter = inbox_filter or AdminInboxFilter()
        query = self._conversation_repo.inbox_query(
            property_id=inbox_filter.property_id,
            participant_id=inbox_filter.participant_id,
            status=inbox_filter.status,
            unresolved_only=inbox_filter.unresolved_only,
        )
        page = max(page, 1)
        docs, total = await asyncio.gather(
            self._conversation_repo.list_all(query, skip=(page - 1) * limit, limit=limit),
            self._conversation_repo.count(query),
        )
        items = await self._summarize(docs, actor, with_message_count=True)
        return AdminInboxPage(items=items, total=total, page=page, total_pages=math.ceil(total / limit) if limit else 0)

    async def unread_total(self, actor: Actor) -> int:
        conversation_ids = await self._conversation_repo.ids_for_user(actor.id)
        return await self._message_repo.count_unread_in(conversation_ids, actor.id)

    async def admin_stats(self, actor: Actor) -> AdminStats:
        if not actor.is_admin:
            raise ForbiddenError()
        now = utcnow()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        total, today, week, active = await asyncio.gather(
            self._conversation_repo.count(),
            self._conversation_repo.count({"created_at": {"$gte": midnight}}),
            self._conversation_repo.count({"created_at": {"$gte": now - timedelta(days=7)}}),
            self._conversation_repo.count({"last_message_at": {"$gte": now - timedelta(hours=24)}}),
        )
        return AdminStats(
            total_conversations=total,
            conversations_today=today,
            conversations_this_week=week,
            active_conversations=active,
        )

    async def _summarize(self, docs: List[Dict[str, Any]], viewer: Actor, with_message_count: bool = False) -> List[ConversationSummary]:
        if not docs:
            return []
        user_ids = {pid for d in docs for pid in d["participant_ids"]}
        names, titles = await asyncio.gather(
            self._user_repo.get_display_names(user_ids),
            self._property_repo.get_titles(d["property_id"] for d in docs),
        )
        return list(await asyncio.gather(*(self._summary(d, viewer, names, titles, with_message_count) for d in docs)))

    async def _summary(
        self,
        doc: Dict[str, Any],
        viewer: Actor,
        names: Dict[str, Optional[str]],
        titles: Dict[str, Optional[str]],
        with_message_count: bool,
    ) -> ConversationSummary:
        convo_oid = doc["_id"]
        latest, unread = await asyncio.gather(
            self._message_repo.latest(convo_oid),
            self._message_repo.count_unread(convo_oid, viewer.id),
        )
        message_count = await self._message_repo.count(convo_oid) if with_message_count else None

        participants = [UserRef(id=pid, name=names.get(pid)) for pid in doc["participant_ids"]]
        # admins looking in from outside have no counterpart
        others = [p for p in participants if p.id != viewer.id]
        counterpart = others[0] if viewer.id in doc["participant_ids"] and others else None

        last_message = None
        if latest is not None:
            last_message = LastMessagePreview(
                id=str(latest["_id"]),
                sender_id=latest["sender_id"],
                preview=make_preview(latest["body"], settings.PREVIEW_LENGTH),
                created_at=as_aware(latest["created_at"]),
            )

        return ConversationSummary(
            id=str(convo_oid),
            property=PropertyRef(id=doc["property_id"], title=titles.get(doc["property_id"])),
            counterpart=counterpart,
            participants=participants,
            status=doc.get("status", "open"),
            created_at=as_aware(doc["created_at"]),
            last_message_at=as_aware(doc["last_message_at"]),
            last_message=last_message,
            unread_count=unread,
            message_count=message_count,
        )
