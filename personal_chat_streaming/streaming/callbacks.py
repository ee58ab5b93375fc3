"""Callback interface and dispatch.

``StreamingCallbacks`` is the output boundary of the streaming client: UI and
persistence code register only the hooks they care about. ``CallbackDispatcher``
maps each applied event onto exactly one hook and shields the stream from
exceptions raised by consumer code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..core.timing_logger import timed
from .frame_decoder import (
    AssistantMessageEvent,
    ContentDeltaEvent,
    ContentEndEvent,
    DecodedEvent,
    DoneEvent,
    ErrorEvent,
    ImageGeneratedEvent,
    ReasoningEffortEvent,
    ThinkingDeltaEvent,
    ThinkingEndEvent,
    ThinkingStartEvent,
    ToolCallEndEvent,
    ToolCallProgressEvent,
    ToolCallStartEvent,
    UserMessageEvent,
)
from .messages import AssistantMessage, UserMessage
from .turn_state import TurnState

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StreamingCallbacks:
    """Optional hooks invoked synchronously, in stream order."""

    on_user_message: Optional[Callable[[UserMessage], None]] = None
    on_reasoning_effort: Optional[Callable[[Optional[str]], None]] = None
    on_thinking_start: Optional[Callable[[], None]] = None
    on_thinking_delta: Optional[Callable[[str, str], None]] = None
    on_thinking_end: Optional[Callable[[str], None]] = None
    on_tool_call_start: Optional[Callable[[str, Any], None]] = None
    on_tool_call_progress: Optional[Callable[[dict[str, Any]], None]] = None
    on_tool_call_end: Optional[Callable[[str, Optional[list[dict[str, Any]]]], None]] = None
    on_content_delta: Optional[Callable[[str, str], None]] = None
    on_content_end: Optional[Callable[[str], None]] = None
    on_image_generated: Optional[Callable[[Optional[str], Optional[str]], None]] = None
    on_assistant_message: Optional[Callable[[AssistantMessage], None]] = None
    on_done: Optional[Callable[[Optional[str]], None]] = None
    on_error: Optional[Callable[[str], None]] = None
    # Always called once per turn, after on_done/on_error, and after cancellation.
    on_streaming_complete: Optional[Callable[[], None]] = None


def _hook_args(event: DecodedEvent, state: TurnState) -> Optional[tuple[str, tuple[Any, ...]]]:
    """Return the hook name and arguments for ``event``, or None when it has no hook."""
    if isinstance(event, UserMessageEvent):
        return "on_user_message", (event.message,)
    if isinstance(event, ReasoningEffortEvent):
        return "on_reasoning_effort", (event.effort,)
    if isinstance(event, ThinkingStartEvent):
        return "on_thinking_start", ()
    if isinstance(event, ThinkingDeltaEvent):
        if not event.content:
            return None
        return "on_thinking_delta", (event.content, state.accumulated_thinking)
    if isinstance(event, ThinkingEndEvent):
        return "on_thinking_end", (state.accumulated_thinking,)
    if isinstance(event, ToolCallStartEvent):
        return "on_tool_call_start", (event.tool_name, event.tool_input)
    if isinstance(event, ToolCallProgressEvent):
        return "on_tool_call_progress", (event.data,)
    if isinstance(event, ToolCallEndEvent):
        return "on_tool_call_end", (event.tool_name, event.sources)
    if isinstance(event, ContentDeltaEvent):
        if not event.content:
            return None
        return "on_content_delta", (event.content, state.accumulated_content)
    if isinstance(event, ContentEndEvent):
        return "on_content_end", (state.accumulated_content,)
    if isinstance(event, ImageGeneratedEvent):
        return "on_image_generated", (event.image_id, event.image_url)
    if isinstance(event, AssistantMessageEvent):
        return "on_assistant_message", (event.message,)
    if isinstance(event, DoneEvent):
        return "on_done", (event.updated_title,)
    if isinstance(event, ErrorEvent):
        return "on_error", (event.message,)
    # connected, ping and unknown events are observability only.
    return None


class CallbackDispatcher:
    """Invokes StreamingCallbacks hooks, logging and swallowing hook failures."""

    def __init__(
        self,
        callbacks: Optional[StreamingCallbacks] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.callbacks = callbacks or StreamingCallbacks()
        self.logger = logger or LOGGER

    @timed
    def dispatch(self, event: DecodedEvent, state: TurnState) -> Optional[str]:
        """Invoke the hook matching ``event`` with values from the post-event ``state``.

        Returns the hook name that was selected (even when the consumer left it
        unset), or None when the event kind has no hook.
        """
        selected = _hook_args(event, state)
        if selected is None:
            return None
        name, args = selected
        self.invoke(name, *args)
        return name

    def invoke(self, name: str, *args: Any) -> None:
        hook = getattr(self.callbacks, name, None)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as exc:
            self.logger.warning("Callback %s failed: %s", name, exc, exc_info=True)
