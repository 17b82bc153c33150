"""Error classification for display.

Maps raw transport/provider error descriptors into a closed set of
causes, each with one fixed, user-safe message.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

import httpx

from promptline.exceptions import (
    ModelConnectionError,
    ProviderHTTPError,
    StreamAbortedError,
    StreamTimeoutError,
    StructuredOutputError,
)

# Unknown errors may show their own text only when it is this short.
MAX_FALLBACK_CHARS = 140


class ErrorCause(Enum):
    """Closed taxonomy of pipeline failure causes."""

    ABORTED = "aborted"
    TIMEOUT = "timeout"
    NETWORK = "network"
    AUTH = "auth"
    MODEL_NOT_FOUND = "model_not_found"
    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    SERVER = "server"
    UNKNOWN = "unknown"


_MESSAGES: dict[ErrorCause, str] = {
    ErrorCause.AUTH: "API key invalid or missing. Update your provider key.",
    ErrorCause.MODEL_NOT_FOUND: "Model not found or not enabled for your key.",
    ErrorCause.RATE_LIMIT: "Rate limit hit. Please wait briefly and retry.",
    ErrorCause.INVALID_REQUEST: (
        "Invalid request parameters. Check model and generation settings."
    ),
    ErrorCause.NETWORK: (
        "Network issue reaching the API. Check connection or configure a proxy."
    ),
    ErrorCause.TIMEOUT: "Connection timed out before streaming started.",
    ErrorCause.SERVER: "Upstream server error. Retry may succeed.",
    ErrorCause.ABORTED: "Request was cancelled.",
    ErrorCause.UNKNOWN: "Unknown error occurred.",
}


@dataclass(frozen=True)
class RawError:
    """What is known about a failure before classification."""

    code: str | None = None
    http_status: int | None = None
    detail: str | None = None


@dataclass(frozen=True)
class UserFacingError:
    cause: ErrorCause
    message: str
    raw: RawError


def _has(text: str, *needles: str) -> bool:
    lowered = text.lower()
    return any(n in lowered for n in needles)


def classify_error(raw: RawError) -> ErrorCause:
    """Classify *raw* into an ErrorCause. First matching rule wins."""
    status = raw.http_status
    code = (raw.code or "").strip().lower()
    detail = raw.detail or ""

    if code in ("aborted", "cancelled", "canceled"):
        return ErrorCause.ABORTED
    if code == "timeout":
        return ErrorCause.TIMEOUT
    if code == "network" and status is None:
        return ErrorCause.NETWORK
    if status in (401, 403) or code in ("auth", "permission"):
        return ErrorCause.AUTH
    if status == 404 or _has(detail, "model_not_found", "model not found", "unknown model"):
        return ErrorCause.MODEL_NOT_FOUND
    if status == 429 or code in ("rate_limit", "rate_limit_exceeded") or _has(detail, "rate limit"):
        return ErrorCause.RATE_LIMIT
    if _has(detail, "quota", "insufficient_quota", "exceeded quota"):
        return ErrorCause.INVALID_REQUEST
    if (status is not None and status >= 500) or code in ("http_5xx", "server"):
        return ErrorCause.SERVER
    if status is not None and status >= 400:
        return ErrorCause.INVALID_REQUEST
    return ErrorCause.UNKNOWN


def friendly_message(cause: ErrorCause) -> str:
    return _MESSAGES[cause]


def to_user_facing(raw: RawError) -> UserFacingError:
    """Classify *raw* and pick the message to show.

    Unclassified errors surface their own detail only when it is short;
    otherwise the fixed fallback is used.
    """
    cause = classify_error(raw)
    message = friendly_message(cause)
    if cause == ErrorCause.UNKNOWN:
        detail = (raw.detail or "").strip()
        if detail and len(detail) <= MAX_FALLBACK_CHARS:
            message = detail
    return UserFacingError(cause=cause, message=message, raw=raw)


def raw_error_from_exception(error: BaseException) -> RawError:
    """Describe an exception raised anywhere in the pipeline."""
    if isinstance(error, (StreamAbortedError, asyncio.CancelledError)):
        return RawError(code="aborted", detail=str(error))
    if isinstance(error, (StreamTimeoutError, TimeoutError, httpx.TimeoutException)):
        return RawError(code="timeout", detail=str(error))
    if isinstance(error, ProviderHTTPError):
        return RawError(code=error.code or None, http_status=error.status, detail=error.detail)
    if isinstance(error, httpx.HTTPStatusError):
        return RawError(
            http_status=error.response.status_code,
            detail=error.response.text[:200],
        )
    if isinstance(error, ModelConnectionError):
        return RawError(code=error.code, detail=str(error))
    if isinstance(error, httpx.TransportError):
        return RawError(code="network", detail=str(error))
    if isinstance(error, StructuredOutputError):
        return RawError(code=error.code, detail=str(error))
    return RawError(detail=str(error))
