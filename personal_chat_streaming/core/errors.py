"""Error handling for the streaming client.

This module handles all error-related functionality:
- StreamingError: Base class for failures surfaced through ``on_error``
- TransportError: Connection failures, timeouts and non-success HTTP statuses
- ProtocolError: ``error`` events sent by the backend inside the stream
- HTTP error body inspection (structured JSON payloads or truncated raw text)

Every error carries a human-readable message; the session controller never lets
these escape ``start``/``cancel`` and reports them via callbacks instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from .config import _JSON_CONTENT_TYPE, UNKNOWN_STREAM_ERROR_MESSAGE
from .timing_logger import timed
from .utils import _normalize_optional_str, _safe_json_loads, _truncate_text

LOGGER = logging.getLogger(__name__)

_DEFAULT_ERROR_BODY_MAX_CHARS = 100

# -----------------------------------------------------------------------------
# Error Classes
# -----------------------------------------------------------------------------

class StreamingError(RuntimeError):
    """Base class for every failure that terminates a streaming turn."""


class TransportError(StreamingError):
    """Connection-level failure or non-success HTTP response."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        reason: Optional[str] = None,
        body: Optional[str] = None,
    ) -> None:
        self.status = status
        self.reason = (reason or "").strip() or None
        self.body = body or ""
        super().__init__(message)

    @property
    def is_http_error(self) -> bool:
        return self.status is not None


class ProtocolError(StreamingError):
    """Error reported by the backend through an ``error`` stream event."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        self.code = code
        self.retryable = retryable
        super().__init__(message)


# -----------------------------------------------------------------------------
# Error Helper Functions
# -----------------------------------------------------------------------------

def _is_json_content_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == _JSON_CONTENT_TYPE or media_type.endswith("+json")


def _message_from_payload(payload: Any) -> Optional[str]:
    """Pull a message out of ``{"error": ...}`` / ``{"message": ...}`` shapes."""
    if not isinstance(payload, dict):
        return None
    error_section = payload.get("error")
    if isinstance(error_section, dict):
        nested = _normalize_optional_str(error_section.get("message"))
        if nested:
            return nested
    elif error_section is not None:
        text = _normalize_optional_str(error_section)
        if text:
            return text
    return _normalize_optional_str(payload.get("message"))


@timed
def _extract_error_message(
    body_text: Optional[str],
    content_type: Optional[str],
    *,
    max_chars: int = _DEFAULT_ERROR_BODY_MAX_CHARS,
) -> Optional[str]:
    """Return a human-readable detail for an HTTP error body.

    JSON bodies are inspected for a structured message first; anything else
    falls back to the first ``max_chars`` characters of the raw text.
    """
    if not body_text:
        return None
    if _is_json_content_type(content_type):
        message = _message_from_payload(_safe_json_loads(body_text))
        if message:
            return message
    raw = _normalize_optional_str(_truncate_text(body_text, max_chars))
    return raw


@timed
def _build_transport_error(
    status: int,
    reason: Optional[str],
    body_text: Optional[str],
    content_type: Optional[str],
    *,
    max_chars: int = _DEFAULT_ERROR_BODY_MAX_CHARS,
) -> TransportError:
    """Create a TransportError for a non-success HTTP response."""
    detail = _extract_error_message(body_text, content_type, max_chars=max_chars)
    message = f"HTTP {status}: {detail}" if detail else f"HTTP {status}"
    return TransportError(message, status=status, reason=reason, body=body_text)


@timed
def _transport_error_from_exception(exc: BaseException) -> TransportError:
    """Translate a network exception raised mid-turn into a TransportError."""
    if isinstance(exc, TransportError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return TransportError("Stream timed out")
    if isinstance(exc, aiohttp.ClientResponseError):
        return TransportError(
            f"HTTP {exc.status}: {exc.message}" if exc.message else f"HTTP {exc.status}",
            status=exc.status,
            reason=exc.message,
        )
    if isinstance(exc, aiohttp.ClientError):
        detail = str(exc).strip() or type(exc).__name__
        return TransportError(f"Connection error: {detail}")
    detail = str(exc).strip()
    return TransportError(detail or UNKNOWN_STREAM_ERROR_MESSAGE)


def _is_retryable_connect_error(exc: BaseException) -> bool:
    """Return True for failures that happen before any response arrived."""
    return isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError)) and not isinstance(
        exc, aiohttp.ServerDisconnectedError
    )
