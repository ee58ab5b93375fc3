"""Configuration management for the personal chat streaming client.

This module contains the configuration schema and shared constants:
- StreamingValves: Client configuration (endpoint, timeouts, cosmetic delays, logging)
- Endpoint and header constants
- Log level resolution from the environment
"""

from __future__ import annotations

import logging
import os
from typing import Literal, Optional, cast

from pydantic import BaseModel, ConfigDict, Field

from .timing_logger import timed

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

_DEFAULT_BASE_URL = "http://localhost:3000"
_DEFAULT_STREAM_PATH_TEMPLATE = "/api/personal-chats/{conversation_id}/messages/stream"
_EVENT_STREAM_CONTENT_TYPE = "text/event-stream"
_JSON_CONTENT_TYPE = "application/json"
_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

UNTERMINATED_STREAM_MESSAGE = "Stream ended before completion"
UNKNOWN_STREAM_ERROR_MESSAGE = "Unknown streaming error"


@timed
def _resolve_log_level_default() -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    """Normalize env-provided log level to the allowed literal set."""
    value = (os.getenv("GLOBAL_LOG_LEVEL") or "INFO").strip().upper()
    if value not in _ALLOWED_LOG_LEVELS:
        value = "INFO"
    return cast(Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], value)


@timed
def _resolve_base_url_default() -> str:
    return (os.getenv("PERSONAL_CHAT_API_BASE_URL") or "").strip() or _DEFAULT_BASE_URL


# -----------------------------------------------------------------------------
# StreamingValves
# -----------------------------------------------------------------------------

class StreamingValves(BaseModel):
    """Configuration shared by every streaming session of one client."""

    model_config = ConfigDict(validate_assignment=True)

    # Connection
    BASE_URL: str = Field(
        default_factory=_resolve_base_url_default,
        description="Backend origin. Defaults to the PERSONAL_CHAT_API_BASE_URL environment variable.",
    )
    STREAM_PATH_TEMPLATE: str = Field(
        default=_DEFAULT_STREAM_PATH_TEMPLATE,
        description="Path of the streaming endpoint. `{conversation_id}` is substituted per turn.",
    )
    HTTP_CONNECT_TIMEOUT_SECONDS: int = Field(
        default=10,
        ge=1,
        description="Seconds to wait for the TCP/TLS connection before failing the turn.",
    )
    HTTP_TOTAL_TIMEOUT_SECONDS: Optional[int] = Field(
        default=120,
        ge=1,
        description="Overall timeout (seconds) for one turn. Set to null to disable it so very long replies are not cut off.",
    )
    HTTP_SOCK_READ_SECONDS: int = Field(
        default=300,
        ge=1,
        description="Idle read timeout (seconds) applied to active streams when HTTP_TOTAL_TIMEOUT_SECONDS is disabled.",
    )
    CONNECT_RETRIES: int = Field(
        default=0,
        ge=0,
        le=5,
        description="Extra attempts to establish the connection. Nothing is retried once a response has been received.",
    )
    READ_CHUNK_BYTES: int = Field(
        default=4096,
        ge=64,
        le=1024 * 1024,
        description="Maximum number of bytes read from the response per transport chunk.",
    )

    # Stream handling
    TOOL_CALL_CLEAR_DELAY_SECONDS: float = Field(
        default=0.5,
        ge=0,
        le=10,
        description="Seconds a completed tool call stays visible before it is cleared. 0 clears it immediately.",
    )
    ERROR_BODY_MAX_CHARS: int = Field(
        default=100,
        ge=10,
        le=10_000,
        description="Maximum characters of a non-JSON error body included in error messages.",
    )
    TREAT_UNTERMINATED_STREAM_AS_ERROR: bool = Field(
        default=False,
        description="When True, a stream that closes without a `done` or `error` event reports an error.",
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default_factory=_resolve_log_level_default,
        description="Minimum level written to the console for streaming turns. Defaults to GLOBAL_LOG_LEVEL.",
    )
    SESSION_LOG_MAX_LINES: int = Field(
        default=2000,
        ge=100,
        le=200_000,
        description="Maximum structured log events retained in memory per turn.",
    )
    ENABLE_TIMING_LOG: bool = Field(
        default=False,
        description="Write function enter/exit timing events for each turn as JSONL.",
    )
    TIMING_LOG_FILE: str = Field(
        default="logs/timing.jsonl",
        description="Destination of timing events when ENABLE_TIMING_LOG is True.",
    )

    @timed
    def stream_url(self, conversation_id: str) -> str:
        """Return the absolute streaming URL for ``conversation_id``."""
        path = self.STREAM_PATH_TEMPLATE.format(conversation_id=conversation_id)
        return self.BASE_URL.rstrip("/") + "/" + path.lstrip("/")
