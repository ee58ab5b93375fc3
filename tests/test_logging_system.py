"""Tests for SessionLogger.

Covers:
- Event classification for stream, transport and session messages
- Structured event building and text formatting
- Turn-scoped buffering via context variables
- Buffer size limits and cleanup
"""

from __future__ import annotations

import logging
import sys
import time
from unittest.mock import patch

import pytest

from personal_chat_streaming.core.logging_system import SessionLogger


def _record(message: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("personal_chat_streaming.test", level, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _restore_context():
    token_conv = SessionLogger.conversation_id.set(None)
    token_turn = SessionLogger.turn_id.set(None)
    token_level = SessionLogger.log_level.set(logging.INFO)
    max_lines = SessionLogger.max_lines
    yield
    SessionLogger.conversation_id.reset(token_conv)
    SessionLogger.turn_id.reset(token_turn)
    SessionLogger.log_level.reset(token_level)
    SessionLogger.max_lines = max_lines


class TestClassifyEventType:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Dropped incomplete frame at stream end (12 chars): 'event: done'", "stream.drain"),
            ("Skipped 2 segment(s) without event/data", "stream.drop"),
            ("Discarding chunk received after cancellation (5 chars)", "stream.drop"),
            ("Malformed frame 'content_delta' dropped (invalid JSON)", "stream.drop"),
            ("Event content_delta applied (awaiting_response -> streaming_content)", "stream.frame"),
            ("HTTP timeouts: connect=10s", "transport"),
            ("Opening stream POST http://x", "transport"),
            ("Connection attempt to http://x failed: refused", "transport"),
            ("Transport failure in turn abc: HTTP 500", "transport"),
            ("Starting turn abc for conversation c1", "session"),
            ("", "session"),
        ],
    )
    def test_classification(self, message: str, expected: str) -> None:
        assert SessionLogger._classify_event_type(message) == expected

    def test_leading_whitespace_is_ignored(self) -> None:
        assert SessionLogger._classify_event_type("   Skipped 1 segment(s)") == "stream.drop"


class TestBuildEvent:
    def test_basic_fields(self) -> None:
        record = _record("Starting turn t1", turn_id="t1", conversation_id="c1")

        event = SessionLogger._build_event(record)

        assert event["message"] == "Starting turn t1"
        assert event["level"] == "INFO"
        assert event["turn_id"] == "t1"
        assert event["conversation_id"] == "c1"
        assert event["event_type"] == "session"
        assert "exception" not in event

    def test_exception_info_is_rendered(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record("Callback on_done failed", level=logging.WARNING)
            record.exc_info = sys.exc_info()

        event = SessionLogger._build_event(record)

        assert "ValueError: boom" in event["exception"]["text"]

    def test_format_event_as_text(self) -> None:
        event = {"created": time.time(), "level": "WARNING", "conversation_id": "c1", "message": "hello"}

        text = SessionLogger.format_event_as_text(event)

        assert "[WARNING]" in text
        assert "[conversation=c1]" in text
        assert text.endswith("hello")


class TestTurnBuffering:
    def test_records_are_buffered_per_turn(self) -> None:
        logger = SessionLogger.get_logger("personal_chat_streaming.tests.buffering")
        SessionLogger.set_context(conversation_id="c1", turn_id="turn-a", level="ERROR")

        logger.info("Starting turn turn-a for conversation c1")
        logger.debug("Event ping applied (thinking -> thinking)")

        events = SessionLogger.events_for("turn-a")
        assert [event["event_type"] for event in events] == ["session", "stream.frame"]
        assert all(event["conversation_id"] == "c1" for event in events)

    def test_records_without_turn_are_not_buffered(self) -> None:
        logger = SessionLogger.get_logger("personal_chat_streaming.tests.no_turn")

        logger.warning("outside any turn")

        assert SessionLogger.logs == {}

    def test_get_logger_is_idempotent(self) -> None:
        first = SessionLogger.get_logger("personal_chat_streaming.tests.idempotent")
        handlers = list(first.handlers)

        second = SessionLogger.get_logger("personal_chat_streaming.tests.idempotent")

        assert second is first
        assert second.handlers == handlers

    def test_console_output_respects_turn_level(self, capsys) -> None:
        logger = SessionLogger.get_logger("personal_chat_streaming.tests.console")
        SessionLogger.set_context(conversation_id="c1", turn_id="turn-b", level="WARNING")

        logger.info("quiet line")
        logger.warning("loud line")

        out = capsys.readouterr().out
        assert "loud line" in out
        assert "quiet line" not in out
        assert len(SessionLogger.events_for("turn-b")) == 2

    def test_buffer_is_bounded(self) -> None:
        SessionLogger.set_max_lines(100)
        SessionLogger.set_context(conversation_id="c1", turn_id="turn-c", level="CRITICAL")
        logger = SessionLogger.get_logger("personal_chat_streaming.tests.bounded")

        for idx in range(150):
            logger.info("line %d", idx)

        events = SessionLogger.events_for("turn-c")
        assert len(events) == 100
        assert events[-1]["message"] == "line 149"

    @pytest.mark.parametrize("value, expected", [(10, 100), (5000, 5000), (10**9, 200_000)])
    def test_set_max_lines_is_clamped(self, value: int, expected: int) -> None:
        SessionLogger.set_max_lines(value)

        assert SessionLogger.max_lines == expected

    def test_process_record_never_raises(self) -> None:
        with patch.object(SessionLogger, "_build_event", side_effect=RuntimeError("broken")):
            SessionLogger.process_record(_record("x", turn_id="turn-d", session_log_level=logging.CRITICAL))

        assert SessionLogger.events_for("turn-d") == []


class TestCleanup:
    def test_stale_buffers_are_removed(self) -> None:
        SessionLogger.process_record(_record("old", turn_id="old", session_log_level=logging.CRITICAL))
        SessionLogger.process_record(_record("new", turn_id="new", session_log_level=logging.CRITICAL))
        SessionLogger._turn_last_seen["old"] = time.time() - 7200

        SessionLogger.cleanup(max_age_seconds=3600)

        assert "old" not in SessionLogger.logs
        assert "new" in SessionLogger.logs
