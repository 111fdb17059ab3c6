"""User-facing error sanitisation and the application-wide exception handler."""

from __future__ import annotations

from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

from radio444.core.logger import get_logger
from radio444.core.observability import capture_exception


SAFE_ERROR_MESSAGE = "444 Radio locking in. Please try again."
INSUFFICIENT_CREDITS_MESSAGE = "Insufficient credits. Please add more credits to continue."

_KNOWN_CREDIT_MESSAGES = (
    "insufficient credits",
    "not enough credits",
    "credits required",
)

logger = get_logger("radio444.errors")


def sanitize_error(error: Any, *, context: str = "request") -> str:
    """Log the raw error server-side and return the generic message."""

    logger.error("sanitized_error", context=context, error=str(error)[:500])
    return SAFE_ERROR_MESSAGE


def sanitize_credit_error(message: str | None) -> str:
    normalized = (message or "").strip().lower()
    if any(known in normalized for known in _KNOWN_CREDIT_MESSAGES):
        return INSUFFICIENT_CREDITS_MESSAGE
    return "Insufficient credits"


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    capture_exception(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": SAFE_ERROR_MESSAGE},
    )
