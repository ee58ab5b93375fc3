"""Tests for mapping applied events onto caller hooks."""

from __future__ import annotations

import logging

import pytest

from conftest import CallbackRecorder
from personal_chat_streaming.streaming.callbacks import CallbackDispatcher, StreamingCallbacks
from personal_chat_streaming.streaming.frame_decoder import (
    ConnectedEvent,
    ContentDeltaEvent,
    ContentEndEvent,
    DoneEvent,
    ErrorEvent,
    PingEvent,
    ThinkingDeltaEvent,
    ThinkingEndEvent,
    UnknownEvent,
)
from personal_chat_streaming.streaming.turn_state import apply_event, begin_turn


def _dispatch(dispatcher: CallbackDispatcher, state, event):
    state = apply_event(state, event)
    return state, dispatcher.dispatch(event, state)


def test_delta_hooks_receive_fragment_and_accumulated_text():
    recorder = CallbackRecorder()
    dispatcher = CallbackDispatcher(recorder.callbacks)
    state = begin_turn("t")

    state, _ = _dispatch(dispatcher, state, ContentDeltaEvent(content="Hel"))
    state, _ = _dispatch(dispatcher, state, ContentDeltaEvent(content="lo"))
    _dispatch(dispatcher, state, ContentEndEvent())

    assert recorder.calls == [
        ("on_content_delta", "Hel", "Hel"),
        ("on_content_delta", "lo", "Hello"),
        ("on_content_end", "Hello"),
    ]


def test_thinking_end_reports_final_text():
    recorder = CallbackRecorder()
    dispatcher = CallbackDispatcher(recorder.callbacks)
    state = begin_turn("t")

    state, _ = _dispatch(dispatcher, state, ThinkingDeltaEvent(content="draft"))
    _dispatch(dispatcher, state, ThinkingEndEvent(content="final"))

    assert recorder.calls[-1] == ("on_thinking_end", "final")


@pytest.mark.parametrize(
    "event", [ConnectedEvent(), PingEvent(timestamp=1), UnknownEvent(event_name="x"), ContentDeltaEvent(content="")]
)
def test_events_without_hooks(event):
    recorder = CallbackRecorder()
    dispatcher = CallbackDispatcher(recorder.callbacks)

    _, name = _dispatch(dispatcher, begin_turn("t"), event)

    assert name is None
    assert recorder.calls == []


def test_dispatch_returns_hook_name_even_when_unset():
    dispatcher = CallbackDispatcher(StreamingCallbacks())

    _, name = _dispatch(dispatcher, begin_turn("t"), DoneEvent(updated_title="Trip Plan"))

    assert name == "on_done"


def test_error_hook_receives_message():
    recorder = CallbackRecorder()
    dispatcher = CallbackDispatcher(recorder.callbacks)

    _dispatch(dispatcher, begin_turn("t"), ErrorEvent(message="boom"))

    assert recorder.calls == [("on_error", "boom")]


def test_hook_exceptions_are_logged_and_swallowed(caplog):
    def broken(_title):
        raise RuntimeError("consumer failure")

    dispatcher = CallbackDispatcher(StreamingCallbacks(on_done=broken))

    with caplog.at_level(logging.WARNING):
        dispatcher.invoke("on_done", "Trip Plan")

    assert "Callback on_done failed: consumer failure" in caplog.text
    assert caplog.records[0].exc_info is not None
