"""
Async client for the conversation API.

Every call takes the caller's Credential explicitly; the client never looks a
token up on its own. HTTP goes through a Transport so tests (or other stacks)
can swap the wire without touching ChatClient.
"""

import asyncio
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx

from propchat.schemas.actor import Credential
from propchat.schemas.conversation import (
    AdminInboxFilter,
    AdminInboxPage,
    AdminStats,
    ConversationList,
    ConversationOut,
)
from propchat.schemas.events import PresenceOut
from propchat.schemas.message import MarkReadResult, MessageOut, MessagePage
from propchat.utils.exceptions import ChatError
from propchat.utils.logger import get_logger


logger = get_logger(__name__)


class ApiError(ChatError):
    """Non-2xx response, carrying the server's error code and HTTP status."""

    def __init__(self, status_code: int, code: str, message: str, details: Optional[Any] = None):
        super().__init__(message=message, code=code, details=details)
        self.status_code = status_code


class Transport(Protocol):

    async def request(
        self,
        method: str,
        path: str,
        credential: Credential,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        ...


class HttpxTransport:

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout))

    async def request(
        self,
        method: str,
        path: str,
        credential: Credential,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        return await self._client.request(method, path, params=params or None, json=json, headers=credential.as_header())

    async def aclose(self) -> None:
        await self._client.aclose()


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    raise ApiError(
        status_code=response.status_code,
        code=body.get("error", "HTTP_ERROR"),
        message=body.get("message", response.reason_phrase),
        details=body.get("details"),
    )


class ChatClient:

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def _call(self, method: str, path: str, credential: Credential, params=None, json=None) -> Any:
        response = await self._transport.request(method, path, credential, params=params, json=json)
        _raise_for_error(response)
        return response.json()

    async def find_or_create(self, credential: Credential, property_id: str) -> ConversationOut:
        data = await self._call("POST", "/conversations/find-or-create", credential, json={"property_id": property_id})
        return ConversationOut.model_validate(data)

    async def get_conversation(self, credential: Credential, conversation_id: str) -> ConversationOut:
        data = await self._call("GET", f"/conversations/{conversation_id}", credential)
        return ConversationOut.model_validate(data)

    async def my_conversations(self, credential: Credential, limit: int = 20, cursor: Optional[str] = None) -> ConversationList:
        data = await self._call("GET", "/conversations/my", credential, params={"limit": limit, "cursor": cursor})
        return ConversationList.model_validate(data)

    async def unread_count(self, credential: Credential) -> int:
        data = await self._call("GET", "/conversations/unread-count", credential)
        return data["total_unread"]

    async def send_message(self, credential: Credential, conversation_id: str, text: str) -> MessageOut:
        data = await self._call("POST", f"/conversations/{conversation_id}/messages", credential, json={"text": text})
        return MessageOut.model_validate(data)

    async def list_messages(
        self,
        credential: Credential,
        conversation_id: str,
        cursor: Optional[str] = None,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> MessagePage:
        params = {"cursor": cursor, "before": before, "limit": limit}
        data = await self._call("GET", f"/conversations/{conversation_id}/messages", credential, params=params)
        return MessagePage.model_validate(data)

    async def mark_read(self, credential: Credential, conversation_id: str, upto_message_id: Optional[str] = None) -> int:
        data = await self._call(
            "POST",
            f"/conversations/{conversation_id}/read",
            credential,
            json={"upto_message_id": upto_message_id},
        )
        return MarkReadResult.model_validate(data).updated

    async def admin_inbox(
        self,
        credential: Credential,
        inbox_filter: Optional[AdminInboxFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> AdminInboxPage:
        params: Dict[str, Any] = (inbox_filter or AdminInboxFilter()).model_dump()
        params.update(page=page, limit=limit)
        if not params["unresolved_only"]:
            params.pop("unresolved_only")
        data = await self._call("GET", "/admin/conversations", credential, params=params)
        return AdminInboxPage.model_validate(data)

    async def admin_stats(self, credential: Credential) -> AdminStats:
        data = await self._call("GET", "/admin/conversations/stats", credential)
        return AdminStats.model_validate(data)

    async def set_status(self, credential: Credential, conversation_id: str, status: str) -> ConversationOut:
        data = await self._call("PUT", f"/admin/conversations/{conversation_id}/status", credential, json={"status": status})
        return ConversationOut.model_validate(data)

    async def presence(self, credential: Credential, user_id: str) -> PresenceOut:
        data = await self._call("GET", f"/presence/{user_id}", credential)
        return PresenceOut.model_validate(data)

    async def poll_messages(
        self,
        credential: Credential,
        conversation_id: str,
        cursor: Optional[str] = None,
        interval: float = 3.0,
        max_polls: Optional[int] = None,
    ) -> AsyncIterator[MessageOut]:
        """
        Yield every message after `cursor`, re-polling until `max_polls` requests
        were made (forever when None).

        Used when the push channel is down; the cursor only moves forward, so
        nothing is yielded twice.
        """
        polls = 0
        while max_polls is None or polls < max_polls:
            page = await self.list_messages(credential, conversation_id, cursor=cursor)
            polls += 1
            logger.debug(f"Polled {len(page.items)} message(s) from {conversation_id}")
            for message in page.items:
                yield message
            if page.next_cursor:
                cursor = page.next_cursor
            if not page.has_more:
                await asyncio.sleep(interval)
