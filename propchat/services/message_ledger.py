import asyncio
import time
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from bson import ObjectId

from propchat.config import settings
from propchat.repositories.conversation_repository import ConversationRepository
from propchat.repositories.message_repository import MessageRepository
from propchat.schemas.actor import Actor
from propchat.schemas.message import MessageOut, MessagePage, ReadReceipt
from propchat.services.conversation_registry import ConversationRegistry
from propchat.utils.cursor import as_aware, decode_cursor, encode_cursor, parse_object_id, utcnow
from propchat.utils.exceptions import ConversationBusyError, InvalidInputError, NotFoundError
from propchat.utils.logger import get_logger
from propchat.utils.rate_limit import MessageRateLimiter
from propchat.utils.text import sanitize_text


logger = get_logger(__name__)

LEASE_POLL_SECONDS = 0.02

# one lock per conversation id, dropped once no append holds it.
# Orders appends inside this process; the lease on the conversation
# document orders them across workers.
_append_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _conversation_lock(conversation_id: str) -> asyncio.Lock:
    lock = _append_locks.get(conversation_id)
    if lock is None:
        lock = asyncio.Lock()
        _append_locks[conversation_id] = lock
    return lock


def message_to_out(doc: Dict[str, Any]) -> MessageOut:
    return MessageOut(
        id=str(doc["_id"]),
        conversation_id=str(doc["conversation_id"]),
        sender_id=doc["sender_id"],
        sender_role=doc["sender_role"],
        body=doc["body"],
        created_at=as_aware(doc["created_at"]),
        read_by=[ReadReceipt(user_id=r["user_id"], read_at=as_aware(r["read_at"])) for r in doc.get("read_by", [])],
    )


class MessageLedger:
    """Append-only, per-conversation ordered message log with read receipts."""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        registry: ConversationRegistry,
        notifier=None,
        rate_limiter: Optional[MessageRateLimiter] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._registry = registry
        self._notifier = notifier
        self._rate_limiter = rate_limiter

    async def append(self, conversation_id: str, actor: Actor, body: str) -> MessageOut:
        convo = await self._registry.authorize(actor, conversation_id)
        text = sanitize_text(body, settings.MESSAGE_MAX_LENGTH)
        if not text:
            raise InvalidInputError("Message text cannot be empty", field="text")
        if self._rate_limiter is not None:
            await self._rate_limiter.hit(actor.id)

        convo_oid = convo["_id"]
        async with _conversation_lock(str(convo_oid)), self._append_lease(convo_oid) as current:
            # never behind the previous append, even if the wall clock stepped back
            created_at = max(utcnow(), current["last_message_at"])
            saved = await self._message_repo.save_message(
                conversation_id=convo_oid,
                sender_id=actor.id,
                sender_role=actor.role.value,
                body=text,
                created_at=created_at,
            )
            # message first, then the conversation timestamp
            await self._conversation_repo.advance_last_message_at(convo_oid, created_at)

        message = message_to_out(saved)
        logger.debug(f"Message {message.id} appended to {conversation_id} by {actor.id}")
        if self._notifier is not None:
            self._notifier.notify_in_background(current, message)
        return message

    @asynccontextmanager
    async def _append_lease(self, conversation_id: ObjectId) -> AsyncIterator[Dict[str, Any]]:
        """
        Hold the conversation's append lease for one timestamp-insert-advance step.

        Yields the conversation as read under the lease, so `last_message_at`
        is the latest committed value. A lease left by a crashed writer is
        taken over once it expires.
        """
        token = uuid.uuid4().hex
        deadline = time.monotonic() + settings.APPEND_LEASE_WAIT_SECONDS
        while True:
            leased = await self._conversation_repo.claim_append_lease(
                conversation_id, token, utcnow(), settings.APPEND_LEASE_SECONDS
            )
            if leased is not None:
                break
            if time.monotonic() >= deadline:
                logger.warning(f"Append lease on {conversation_id} not acquired within {settings.APPEND_LEASE_WAIT_SECONDS}s")
                raise ConversationBusyError()
            await asyncio.sleep(LEASE_POLL_SECONDS)
        try:
            yield leased
        finally:
            await self._conversation_repo.release_append_lease(conversation_id, token)

    async def list_messages(
        self,
        conversation_id: str,
        actor: Actor,
        after: Optional[str] = None,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> MessagePage:
        """
        One finite page of the conversation, oldest first.

        `after` pages forward from a cursor (or from the beginning); `before`
        returns the newest messages older than the cursor. Cursors are ordering
        keys, so appends landing between two calls cannot shift a page boundary.
        """
        if after and before:
            raise InvalidInputError("Use either cursor or before, not both", field="before")
        convo = await self._registry.authorize(actor, conversation_id)
        limit = max(1, min(limit or settings.MESSAGE_PAGE_DEFAULT, settings.MESSAGE_PAGE_MAX))

        if before:
            docs, has_more = await self._message_repo.page_before(convo["_id"], decode_cursor(before), limit)
        else:
            docs, has_more = await self._message_repo.page_after(convo["_id"], decode_cursor(after) if after else None, limit)

        items = [message_to_out(d) for d in docs]
        return MessagePage(
            items=items,
            next_cursor=encode_cursor(docs[-1]["created_at"], docs[-1]["_id"]) if docs else None,
            prev_cursor=encode_cursor(docs[0]["created_at"], docs[0]["_id"]) if docs else None,
            has_more=has_more,
        )

    async def iter_messages(
        self,
        conversation_id: str,
        actor: Actor,
        after: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> AsyncIterator[MessageOut]:
        """Walk forward page by page up to the current end. Restart with the last seen cursor."""
        while True:
            page = await self.list_messages(conversation_id, actor, after=after, limit=page_size)
            for message in page.items:
                yield message
            if not page.has_more:
                return
            after = page.next_cursor

    async def mark_read(self, conversation_id: str, actor: Actor, upto_message_id: Optional[str] = None) -> int:
        convo = await self._registry.authorize(actor, conversation_id)
        if upto_message_id:
            message_oid = parse_object_id(upto_message_id, field="upto_message_id")
            upto = await self._message_repo.get_in_conversation(convo["_id"], message_oid)
            if upto is None:
                raise NotFoundError("Message not found", details={"message_id": upto_message_id})
        else:
            upto = await self._message_repo.latest(convo["_id"])
            if upto is None:
                return 0

        updated = await self._message_repo.mark_read(convo["_id"], actor.id, (upto["created_at"], upto["_id"]), utcnow())
        if updated:
            logger.debug(f"{actor.id} read {updated} message(s) in {conversation_id}")
        return updated
