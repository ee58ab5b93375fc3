"""Turn lifecycle state and the reducer that drives it.

A ``TurnState`` describes one request/response cycle: which phase the turn is
in, the accumulated reasoning and answer text, the active tool call and the ids
of the persisted messages. ``apply_event`` is a pure reducer: it never mutates
its input and never raises, so the state machine can be exercised without any
transport.

Phases::

    IDLE -> AWAITING_RESPONSE -> {THINKING, TOOL_CALLING, STREAMING_CONTENT}* -> TERMINAL

Out-of-order events (e.g. a ``thinking_delta`` without ``thinking_start``) are
applied anyway; the accumulators are created on demand.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

from ..core.timing_logger import timed
from ..core.utils import _new_turn_id
from .frame_decoder import (
    AssistantMessageEvent,
    ConnectedEvent,
    ContentDeltaEvent,
    ContentEndEvent,
    DecodedEvent,
    DoneEvent,
    ErrorEvent,
    ImageGeneratedEvent,
    PingEvent,
    ReasoningEffortEvent,
    ThinkingDeltaEvent,
    ThinkingEndEvent,
    ThinkingStartEvent,
    ToolCallEndEvent,
    ToolCallProgressEvent,
    ToolCallStartEvent,
    UnknownEvent,
    UserMessageEvent,
)


class TurnPhase(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    THINKING = "thinking"
    TOOL_CALLING = "tool_calling"
    STREAMING_CONTENT = "streaming_content"
    TERMINAL = "terminal"


class ToolCallStatus(str, Enum):
    STARTING = "starting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class ToolCallState:
    name: str
    status: ToolCallStatus = ToolCallStatus.STARTING
    tool_input: Any = None
    sources: Optional[list[dict[str, Any]]] = None


@dataclass(frozen=True, slots=True)
class TurnState:
    """Immutable snapshot of one conversational turn."""

    turn_id: str = ""
    phase: TurnPhase = TurnPhase.IDLE
    accumulated_thinking: str = ""
    accumulated_content: str = ""
    active_tool_call: Optional[ToolCallState] = None
    user_message_id: Optional[str] = None
    assistant_message_id: Optional[str] = None
    reasoning_effort: Optional[str] = None
    generated_image_url: Optional[str] = None
    updated_title: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase is TurnPhase.TERMINAL

    @property
    def is_thinking(self) -> bool:
        return self.phase is TurnPhase.THINKING


@timed
def begin_turn(turn_id: Optional[str] = None) -> TurnState:
    """Return a fresh state for a turn whose request is about to be sent."""
    return TurnState(turn_id=turn_id or _new_turn_id(), phase=TurnPhase.AWAITING_RESPONSE)


# -----------------------------------------------------------------------------
# Transition handlers
# -----------------------------------------------------------------------------

def _unchanged(state: TurnState, _event: Any) -> TurnState:
    return state


def _on_user_message(state: TurnState, event: UserMessageEvent) -> TurnState:
    if state.user_message_id is not None or not event.message.id:
        return state
    return replace(state, user_message_id=event.message.id)


def _on_reasoning_effort(state: TurnState, event: ReasoningEffortEvent) -> TurnState:
    return replace(state, reasoning_effort=event.effort)


def _on_thinking_start(state: TurnState, _event: ThinkingStartEvent) -> TurnState:
    return replace(state, phase=TurnPhase.THINKING, accumulated_thinking="")


def _on_thinking_delta(state: TurnState, event: ThinkingDeltaEvent) -> TurnState:
    if not event.content:
        return state
    return replace(
        state,
        phase=TurnPhase.THINKING,
        accumulated_thinking=state.accumulated_thinking + event.content,
    )


def _on_thinking_end(state: TurnState, event: ThinkingEndEvent) -> TurnState:
    return replace(
        state,
        phase=TurnPhase.AWAITING_RESPONSE,
        accumulated_thinking=event.content or state.accumulated_thinking,
    )


def _on_tool_call_start(state: TurnState, event: ToolCallStartEvent) -> TurnState:
    # A second start replaces the active tool call; calls never stack.
    tool_call = ToolCallState(name=event.tool_name, tool_input=event.tool_input)
    return replace(state, phase=TurnPhase.TOOL_CALLING, active_tool_call=tool_call)


def _on_tool_call_progress(state: TurnState, _event: ToolCallProgressEvent) -> TurnState:
    if state.active_tool_call is None:
        return state
    tool_call = replace(state.active_tool_call, status=ToolCallStatus.IN_PROGRESS)
    return replace(state, phase=TurnPhase.TOOL_CALLING, active_tool_call=tool_call)


def _on_tool_call_end(state: TurnState, event: ToolCallEndEvent) -> TurnState:
    tool_call = state.active_tool_call
    if tool_call is not None:
        tool_call = replace(tool_call, status=ToolCallStatus.COMPLETED, sources=event.sources)
    return replace(state, phase=TurnPhase.AWAITING_RESPONSE, active_tool_call=tool_call)


def _on_content_delta(state: TurnState, event: ContentDeltaEvent) -> TurnState:
    if not event.content:
        return state
    return replace(
        state,
        phase=TurnPhase.STREAMING_CONTENT,
        accumulated_content=state.accumulated_content + event.content,
    )


def _on_content_end(state: TurnState, event: ContentEndEvent) -> TurnState:
    return replace(
        state,
        phase=TurnPhase.AWAITING_RESPONSE,
        accumulated_content=event.content or state.accumulated_content,
    )


def _on_image_generated(state: TurnState, event: ImageGeneratedEvent) -> TurnState:
    if state.generated_image_url is not None or not event.image_url:
        return state
    return replace(state, generated_image_url=event.image_url)


def _on_assistant_message(state: TurnState, event: AssistantMessageEvent) -> TurnState:
    message = event.message
    changes: dict[str, Any] = {}
    if state.assistant_message_id is None and message.id:
        changes["assistant_message_id"] = message.id
    if message.generated_image_url:
        if state.generated_image_url is None:
            changes["generated_image_url"] = message.generated_image_url
        changes["active_tool_call"] = None
    return replace(state, **changes) if changes else state


def _on_done(state: TurnState, event: DoneEvent) -> TurnState:
    return replace(
        state,
        phase=TurnPhase.TERMINAL,
        active_tool_call=None,
        updated_title=event.updated_title,
    )


def _on_error(state: TurnState, event: ErrorEvent) -> TurnState:
    return replace(
        state,
        phase=TurnPhase.TERMINAL,
        active_tool_call=None,
        last_error=event.message,
    )


_TRANSITIONS: dict[type, Callable[[TurnState, Any], TurnState]] = {
    ConnectedEvent: _unchanged,
    UserMessageEvent: _on_user_message,
    ReasoningEffortEvent: _on_reasoning_effort,
    ThinkingStartEvent: _on_thinking_start,
    ThinkingDeltaEvent: _on_thinking_delta,
    ThinkingEndEvent: _on_thinking_end,
    ToolCallStartEvent: _on_tool_call_start,
    ToolCallProgressEvent: _on_tool_call_progress,
    ToolCallEndEvent: _on_tool_call_end,
    ContentDeltaEvent: _on_content_delta,
    ContentEndEvent: _on_content_end,
    ImageGeneratedEvent: _on_image_generated,
    AssistantMessageEvent: _on_assistant_message,
    DoneEvent: _on_done,
    ErrorEvent: _on_error,
    PingEvent: _unchanged,
    UnknownEvent: _unchanged,
}


# -----------------------------------------------------------------------------
# Public reducer API
# -----------------------------------------------------------------------------

@timed
def apply_event(state: TurnState, event: DecodedEvent) -> TurnState:
    """Return the state that results from applying ``event`` to ``state``.

    Terminal states absorb every further event. Unrecognized objects leave the
    state unchanged.
    """
    if state.is_terminal:
        return state
    handler = _TRANSITIONS.get(type(event), _unchanged)
    return handler(state, event)


@timed
def fail_turn(state: TurnState, message: str) -> TurnState:
    """Move the turn to TERMINAL because the transport failed."""
    return apply_event(state, ErrorEvent(message=message, origin="transport"))


@timed
def finish_turn(state: TurnState) -> TurnState:
    """Move the turn to TERMINAL without an error (stream closed or cancelled)."""
    if state.is_terminal:
        return state
    return replace(state, phase=TurnPhase.TERMINAL, active_tool_call=None)


@timed
def clear_tool_call(state: TurnState, expected: Optional[ToolCallState]) -> TurnState:
    """Clear the active tool call, but only if it is still ``expected``.

    Used for the delayed cosmetic clear after ``tool_call_end``: a newer tool
    call that started in the meantime is left untouched.
    """
    if expected is None or state.active_tool_call is not expected:
        return state
    return replace(state, active_tool_call=None)
