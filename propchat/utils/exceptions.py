"""
Messaging core exceptions.

Services raise these; middleware/error_handler.py maps them to HTTP responses.
TransientStorageConflict is internal to the registry and never reaches a caller.
"""

from typing import Any, Optional


class ChatError(Exception):
    """Base class for messaging errors reported to the caller."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class NotFoundError(ChatError):

    def __init__(self, message: str = "Not found", details: Optional[Any] = None):
        super().__init__(message=message, code="NOT_FOUND", details=details)


class ForbiddenError(ChatError):
    """Actor is neither a participant nor an admin.

    Non-admins get this same error whether or not the conversation exists.
    """

    def __init__(self, message: str = "Access denied"):
        super().__init__(message=message, code="FORBIDDEN")


class InvalidOperationError(ChatError):

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message=message, code="INVALID_OPERATION", details=details)


class InvalidInputError(ChatError):

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="INVALID_INPUT",
            details={"field": field} if field else None,
        )


class UnauthenticatedError(ChatError):

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message, code="UNAUTHENTICATED")


class RateLimitedError(ChatError):

    def __init__(self, retry_after: float):
        super().__init__(
            message="Too many messages. Please wait a moment.",
            code="RATE_LIMITED",
            details={"retry_after": round(retry_after, 1)},
        )


class ConversationBusyError(ChatError):
    """Another writer kept the conversation's append lease past the wait budget."""

    def __init__(self, retry_after: float = 1.0):
        super().__init__(
            message="Conversation is busy. Please retry.",
            code="CONVERSATION_BUSY",
            details={"retry_after": retry_after},
        )


class TransientStorageConflict(Exception):
    """Unique-key collision on insert; the caller re-reads the winning row."""

    def __init__(self, key: dict):
        super().__init__(f"Duplicate key: {key}")
        self.key = key
