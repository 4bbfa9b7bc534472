"""
Exception handlers for the FastAPI app.

Every ChatError becomes {error, message, details, timestamp} with the status
code from STATUS_CODES; request validation failures become 400s.
"""

from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from propchat.utils.exceptions import (
    ChatError,
    ConversationBusyError,
    ForbiddenError,
    InvalidInputError,
    InvalidOperationError,
    NotFoundError,
    RateLimitedError,
    UnauthenticatedError,
)
from propchat.utils.logger import get_logger


logger = get_logger(__name__)

STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    InvalidOperationError: status.HTTP_400_BAD_REQUEST,
    InvalidInputError: status.HTTP_400_BAD_REQUEST,
    UnauthenticatedError: status.HTTP_401_UNAUTHORIZED,
    RateLimitedError: status.HTTP_429_TOO_MANY_REQUESTS,
    ConversationBusyError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: ChatError) -> int:
    for exc_type, code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def error_body(code: str, message: str, details=None) -> dict:
    return {
        "error": code,
        "message": message,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def chat_error_handler(request: Request, exc: ChatError):
    status_code = status_for(exc)
    logger.warning(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    headers = None
    if isinstance(exc, UnauthenticatedError):
        headers = {"WWW-Authenticate": "Bearer"}
    elif isinstance(exc, (RateLimitedError, ConversationBusyError)):
        headers = {"Retry-After": str(max(1, int(exc.details["retry_after"])))}
    return JSONResponse(status_code=status_code, content=error_body(exc.code, exc.message, exc.details), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(f"{request.method} {request.url.path} -> 400 VALIDATION_ERROR")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("VALIDATION_ERROR", "Request validation failed", errors),
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    logger.info("Exception handlers registered")
