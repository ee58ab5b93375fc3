"""Tests for the pure turn reducer."""

from __future__ import annotations

from functools import reduce

import pytest

from personal_chat_streaming.streaming.frame_decoder import (
    AssistantMessageEvent,
    ConnectedEvent,
    ContentDeltaEvent,
    ContentEndEvent,
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
from personal_chat_streaming.streaming.messages import AssistantMessage, UserMessage
from personal_chat_streaming.streaming.turn_state import (
    ToolCallStatus,
    TurnPhase,
    TurnState,
    apply_event,
    begin_turn,
    clear_tool_call,
    fail_turn,
    finish_turn,
)


def _run(*events, state: TurnState | None = None) -> TurnState:
    return reduce(apply_event, events, state or begin_turn("turn-1"))


def test_begin_turn_is_fresh():
    state = begin_turn("turn-1")

    assert state.turn_id == "turn-1"
    assert state.phase is TurnPhase.AWAITING_RESPONSE
    assert state.accumulated_thinking == ""
    assert state.accumulated_content == ""
    assert state.active_tool_call is None


def test_begin_turn_generates_an_id():
    assert begin_turn().turn_id != begin_turn().turn_id


def test_default_state_is_idle():
    assert TurnState().phase is TurnPhase.IDLE


def test_thinking_accumulates_and_end_keeps_accumulator():
    state = _run(
        ThinkingStartEvent(),
        ThinkingDeltaEvent(content="Hel"),
        ThinkingDeltaEvent(content="lo"),
    )
    assert state.phase is TurnPhase.THINKING
    assert state.is_thinking
    assert state.accumulated_thinking == "Hello"

    ended = apply_event(state, ThinkingEndEvent())
    assert ended.phase is TurnPhase.AWAITING_RESPONSE
    assert ended.accumulated_thinking == "Hello"


def test_thinking_end_content_replaces_accumulator():
    state = _run(ThinkingDeltaEvent(content="draft"), ThinkingEndEvent(content="final"))

    assert state.accumulated_thinking == "final"


def test_thinking_start_resets_only_thinking():
    state = _run(
        ThinkingDeltaEvent(content="first"),
        ContentDeltaEvent(content="answer"),
        ThinkingStartEvent(),
    )

    assert state.accumulated_thinking == ""
    assert state.accumulated_content == "answer"


def test_accumulators_are_independent_across_phases():
    state = _run(
        ThinkingStartEvent(),
        ThinkingDeltaEvent(content="a"),
        ToolCallStartEvent(tool_name="web_search"),
        ToolCallEndEvent(tool_name="web_search"),
        ThinkingDeltaEvent(content="b"),
        ContentDeltaEvent(content="x"),
        ContentDeltaEvent(content="y"),
    )

    assert state.accumulated_thinking == "ab"
    assert state.accumulated_content == "xy"
    assert state.phase is TurnPhase.STREAMING_CONTENT


def test_content_accumulates_in_order():
    deltas = ["The ", "quick ", "brown ", "fox"]

    state = _run(*(ContentDeltaEvent(content=d) for d in deltas))

    assert state.accumulated_content == "".join(deltas)


def test_content_end_uses_payload_or_accumulator():
    state = _run(ContentDeltaEvent(content="partial"))

    assert apply_event(state, ContentEndEvent()).accumulated_content == "partial"
    assert apply_event(state, ContentEndEvent(content="complete")).accumulated_content == "complete"
    assert apply_event(state, ContentEndEvent()).phase is TurnPhase.AWAITING_RESPONSE


@pytest.mark.parametrize("event", [ThinkingDeltaEvent(content=""), ContentDeltaEvent(content="")])
def test_empty_delta_is_a_no_op(event):
    state = _run(ThinkingStartEvent())

    assert apply_event(state, event) is state


def test_out_of_order_delta_is_applied():
    state = _run(ContentDeltaEvent(content="early"))

    assert state.phase is TurnPhase.STREAMING_CONTENT
    assert state.accumulated_content == "early"


def test_tool_call_lifecycle():
    state = _run(ToolCallStartEvent(tool_name="web_search", tool_input={"query": "paris"}))
    assert state.phase is TurnPhase.TOOL_CALLING
    assert state.active_tool_call.name == "web_search"
    assert state.active_tool_call.status is ToolCallStatus.STARTING
    assert state.active_tool_call.tool_input == {"query": "paris"}

    state = apply_event(state, ToolCallProgressEvent(data={"step": 1}))
    assert state.active_tool_call.status is ToolCallStatus.IN_PROGRESS

    sources = [{"title": "Paris", "url": "https://paris.example"}]
    state = apply_event(state, ToolCallEndEvent(tool_name="web_search", sources=sources))
    assert state.phase is TurnPhase.AWAITING_RESPONSE
    assert state.active_tool_call.status is ToolCallStatus.COMPLETED
    assert state.active_tool_call.sources == sources


def test_second_tool_call_replaces_the_first():
    state = _run(
        ToolCallStartEvent(tool_name="web_search"),
        ToolCallStartEvent(tool_name="fetch_url"),
    )

    assert state.active_tool_call.name == "fetch_url"
    assert state.active_tool_call.status is ToolCallStatus.STARTING


def test_tool_call_progress_without_active_call_is_ignored():
    state = _run()

    assert apply_event(state, ToolCallProgressEvent(data={})) is state


def test_clear_tool_call_requires_the_expected_call():
    state = _run(ToolCallStartEvent(tool_name="web_search"), ToolCallEndEvent(tool_name="web_search"))
    completed = state.active_tool_call

    newer = apply_event(state, ToolCallStartEvent(tool_name="fetch_url"))
    assert clear_tool_call(newer, completed) is newer
    assert clear_tool_call(state, completed).active_tool_call is None
    assert clear_tool_call(state, None) is state


def test_message_ids_are_set_once():
    state = _run(
        UserMessageEvent(message=UserMessage(id="u1")),
        UserMessageEvent(message=UserMessage(id="u2")),
        AssistantMessageEvent(message=AssistantMessage(id="a1")),
        AssistantMessageEvent(message=AssistantMessage(id="a2")),
    )

    assert state.user_message_id == "u1"
    assert state.assistant_message_id == "a1"


def test_reasoning_effort_is_recorded():
    assert _run(ReasoningEffortEvent(effort="high")).reasoning_effort == "high"


def test_generated_image_url_is_set_once():
    state = _run(
        ImageGeneratedEvent(image_id="i1", image_url="https://img/1.png"),
        ImageGeneratedEvent(image_id="i2", image_url="https://img/2.png"),
    )

    assert state.generated_image_url == "https://img/1.png"


def test_assistant_message_with_image_clears_tool_call():
    state = _run(
        ToolCallStartEvent(tool_name="generate_image"),
        AssistantMessageEvent(message=AssistantMessage(id="a1", generated_image_url="https://img/3.png")),
    )

    assert state.active_tool_call is None
    assert state.generated_image_url == "https://img/3.png"


def test_done_is_terminal_and_clears_tool_call():
    state = _run(ToolCallStartEvent(tool_name="web_search"), DoneEvent(updated_title="Trip Plan"))

    assert state.is_terminal
    assert state.active_tool_call is None
    assert state.updated_title == "Trip Plan"


def test_error_is_terminal():
    state = _run(ContentDeltaEvent(content="x"), ErrorEvent(message="boom"))

    assert state.is_terminal
    assert state.last_error == "boom"
    assert state.accumulated_content == "x"


@pytest.mark.parametrize(
    "late",
    [
        ContentDeltaEvent(content="late"),
        ThinkingStartEvent(),
        ToolCallStartEvent(tool_name="web_search"),
        DoneEvent(updated_title="Other"),
        ErrorEvent(message="late error"),
    ],
)
def test_terminal_state_absorbs_events(late):
    terminal = _run(DoneEvent(updated_title="Trip Plan"))

    assert apply_event(terminal, late) is terminal


@pytest.mark.parametrize(
    "event", [ConnectedEvent(status="connected"), PingEvent(timestamp=1), UnknownEvent(event_name="x")]
)
def test_observability_events_leave_state_unchanged(event):
    state = _run(ContentDeltaEvent(content="x"))

    assert apply_event(state, event) is state


def test_fail_turn():
    state = fail_turn(_run(ToolCallStartEvent(tool_name="web_search")), "HTTP 500")

    assert state.is_terminal
    assert state.last_error == "HTTP 500"
    assert state.active_tool_call is None


def test_finish_turn_keeps_accumulators():
    state = finish_turn(_run(ContentDeltaEvent(content="x")))

    assert state.is_terminal
    assert state.accumulated_content == "x"
    assert state.last_error is None
    assert finish_turn(state) is state


def test_apply_event_does_not_mutate_input():
    state = _run(ContentDeltaEvent(content="a"))

    apply_event(state, ContentDeltaEvent(content="b"))

    assert state.accumulated_content == "a"
