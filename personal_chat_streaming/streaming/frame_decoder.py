"""Frame decoding into typed stream events.

Each Frame's ``raw_data`` is parsed as JSON and classified by its event name
into a closed set of event variants. Decoding is stateless and never raises:
a payload that cannot be parsed yields ``Malformed`` so the session controller
can log it and keep the stream alive.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Union

from pydantic import ValidationError

from ..core.config import UNKNOWN_STREAM_ERROR_MESSAGE
from ..core.timing_logger import timed
from ..core.utils import _coerce_sources, _normalize_optional_str, _optional_text
from .frame_parser import Frame
from .messages import AssistantMessage, UserMessage


class EventKind(str, Enum):
    CONNECTED = "connected"
    USER_MESSAGE = "user_message"
    REASONING_EFFORT = "reasoning_effort"
    THINKING_START = "thinking_start"
    THINKING_DELTA = "thinking_delta"
    THINKING_END = "thinking_end"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_PROGRESS = "tool_call_progress"
    TOOL_CALL_END = "tool_call_end"
    CONTENT_DELTA = "content_delta"
    CONTENT_END = "content_end"
    IMAGE_GENERATED = "image_generated"
    ASSISTANT_MESSAGE = "assistant_message"
    DONE = "done"
    ERROR = "error"
    PING = "ping"
    UNKNOWN = "unknown"


# -----------------------------------------------------------------------------
# Event variants
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ConnectedEvent:
    kind: ClassVar[EventKind] = EventKind.CONNECTED
    status: Optional[str] = None
    conversation_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class UserMessageEvent:
    kind: ClassVar[EventKind] = EventKind.USER_MESSAGE
    message: UserMessage = field(default_factory=UserMessage)


@dataclass(frozen=True, slots=True)
class ReasoningEffortEvent:
    kind: ClassVar[EventKind] = EventKind.REASONING_EFFORT
    effort: Optional[str] = None
    complexity: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ThinkingStartEvent:
    kind: ClassVar[EventKind] = EventKind.THINKING_START


@dataclass(frozen=True, slots=True)
class ThinkingDeltaEvent:
    kind: ClassVar[EventKind] = EventKind.THINKING_DELTA
    content: str = ""


@dataclass(frozen=True, slots=True)
class ThinkingEndEvent:
    kind: ClassVar[EventKind] = EventKind.THINKING_END
    content: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ToolCallStartEvent:
    kind: ClassVar[EventKind] = EventKind.TOOL_CALL_START
    tool_name: str = ""
    tool_input: Any = None


@dataclass(frozen=True, slots=True)
class ToolCallProgressEvent:
    kind: ClassVar[EventKind] = EventKind.TOOL_CALL_PROGRESS
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolCallEndEvent:
    kind: ClassVar[EventKind] = EventKind.TOOL_CALL_END
    tool_name: str = ""
    sources: Optional[list[dict[str, Any]]] = None


@dataclass(frozen=True, slots=True)
class ContentDeltaEvent:
    kind: ClassVar[EventKind] = EventKind.CONTENT_DELTA
    content: str = ""


@dataclass(frozen=True, slots=True)
class ContentEndEvent:
    kind: ClassVar[EventKind] = EventKind.CONTENT_END
    content: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ImageGeneratedEvent:
    kind: ClassVar[EventKind] = EventKind.IMAGE_GENERATED
    image_id: Optional[str] = None
    image_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AssistantMessageEvent:
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_MESSAGE
    message: AssistantMessage = field(default_factory=AssistantMessage)


@dataclass(frozen=True, slots=True)
class DoneEvent:
    kind: ClassVar[EventKind] = EventKind.DONE
    updated_title: Optional[str] = None
    success: bool = True


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Terminal failure; ``origin`` is "server" for stream events, "transport" otherwise."""

    kind: ClassVar[EventKind] = EventKind.ERROR
    message: str = ""
    code: Optional[str] = None
    retryable: bool = False
    origin: str = "server"


@dataclass(frozen=True, slots=True)
class PingEvent:
    kind: ClassVar[EventKind] = EventKind.PING
    timestamp: Any = None


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    kind: ClassVar[EventKind] = EventKind.UNKNOWN
    event_name: str = ""
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Malformed:
    """A frame whose payload could not be decoded."""

    event_name: str
    raw_data: str
    reason: str


DecodedEvent = Union[
    ConnectedEvent,
    UserMessageEvent,
    ReasoningEffortEvent,
    ThinkingStartEvent,
    ThinkingDeltaEvent,
    ThinkingEndEvent,
    ToolCallStartEvent,
    ToolCallProgressEvent,
    ToolCallEndEvent,
    ContentDeltaEvent,
    ContentEndEvent,
    ImageGeneratedEvent,
    AssistantMessageEvent,
    DoneEvent,
    ErrorEvent,
    PingEvent,
    UnknownEvent,
]


# -----------------------------------------------------------------------------
# Payload builders
# -----------------------------------------------------------------------------

def _build_connected(payload: dict[str, Any]) -> ConnectedEvent:
    return ConnectedEvent(
        status=_normalize_optional_str(payload.get("status")),
        conversation_id=_normalize_optional_str(payload.get("conversationId")),
    )


def _build_user_message(payload: dict[str, Any]) -> UserMessageEvent:
    return UserMessageEvent(message=UserMessage.model_validate(payload))


def _build_reasoning_effort(payload: dict[str, Any]) -> ReasoningEffortEvent:
    # The backend names this event "thinking_level" with a "level" key.
    effort = payload.get("effort", payload.get("level"))
    return ReasoningEffortEvent(
        effort=_normalize_optional_str(effort),
        complexity=_normalize_optional_str(payload.get("complexity")),
    )


def _build_tool_call_end(payload: dict[str, Any]) -> ToolCallEndEvent:
    sources = _coerce_sources(payload.get("sources"))
    if sources is None:
        # URL fetches report {url, title, success} entries under "urls".
        sources = _coerce_sources(payload.get("urls"))
    return ToolCallEndEvent(
        tool_name=_normalize_optional_str(payload.get("toolName")) or "",
        sources=sources,
    )


def _build_image_generated(payload: dict[str, Any]) -> ImageGeneratedEvent:
    return ImageGeneratedEvent(
        image_id=_normalize_optional_str(payload.get("imageId")),
        image_url=_normalize_optional_str(payload.get("imageUrl")),
    )


def _build_done(payload: dict[str, Any]) -> DoneEvent:
    return DoneEvent(
        updated_title=_normalize_optional_str(payload.get("updatedTitle")),
        success=payload.get("success") is not False,
    )


def _build_error(payload: dict[str, Any]) -> ErrorEvent:
    error = payload.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    message = _normalize_optional_str(error) or _normalize_optional_str(payload.get("message"))
    return ErrorEvent(
        message=message or UNKNOWN_STREAM_ERROR_MESSAGE,
        code=_normalize_optional_str(payload.get("code")),
        retryable=bool(payload.get("retryable", False)),
    )


_BUILDERS: dict[str, Callable[[dict[str, Any]], DecodedEvent]] = {
    "connected": _build_connected,
    "user_message": _build_user_message,
    "reasoning_effort": _build_reasoning_effort,
    "thinking_level": _build_reasoning_effort,
    "thinking_start": lambda _payload: ThinkingStartEvent(),
    "thinking_delta": lambda payload: ThinkingDeltaEvent(content=_optional_text(payload.get("content")) or ""),
    "thinking_end": lambda payload: ThinkingEndEvent(content=_optional_text(payload.get("content"))),
    "tool_call_start": lambda payload: ToolCallStartEvent(
        tool_name=_normalize_optional_str(payload.get("toolName")) or "",
        tool_input=payload.get("toolInput"),
    ),
    "tool_call_progress": lambda payload: ToolCallProgressEvent(data=payload),
    "tool_call_end": _build_tool_call_end,
    "content_delta": lambda payload: ContentDeltaEvent(content=_optional_text(payload.get("content")) or ""),
    "content_end": lambda payload: ContentEndEvent(content=_optional_text(payload.get("content"))),
    "image_generated": _build_image_generated,
    "assistant_message": lambda payload: AssistantMessageEvent(message=AssistantMessage.model_validate(payload)),
    "done": _build_done,
    "error": _build_error,
    "ping": lambda payload: PingEvent(timestamp=payload.get("timestamp")),
}

KNOWN_EVENT_NAMES = frozenset(_BUILDERS)


@timed
def decode_frame(frame: Frame) -> DecodedEvent | Malformed:
    """Decode one frame into a typed event, or ``Malformed`` on failure."""
    try:
        payload = json.loads(frame.raw_data)
    except (ValueError, RecursionError) as exc:
        return Malformed(frame.event_name, frame.raw_data, f"invalid JSON: {exc}")
    if not isinstance(payload, dict):
        return Malformed(frame.event_name, frame.raw_data, f"expected a JSON object, got {type(payload).__name__}")

    builder = _BUILDERS.get(frame.event_name)
    if builder is None:
        return UnknownEvent(event_name=frame.event_name, payload=payload)
    try:
        return builder(payload)
    except ValidationError as exc:
        return Malformed(frame.event_name, frame.raw_data, f"invalid payload: {exc.error_count()} validation error(s)")
