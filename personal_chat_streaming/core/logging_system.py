"""Logging system with per-turn log capture.

This module handles all logging-related functionality:
- SessionLogger: Turn-aware logger with context-aware buffering
- Log event classification and formatting
- Automatic cleanup of stale turn buffers

The SessionLogger uses contextvars to track conversation_id and turn_id, so two
StreamingSession instances on one event loop keep their records apart.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
import traceback
from collections import deque
from contextvars import ContextVar
from typing import Any, Dict, Optional

from .timing_logger import timed

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# SessionLogger Class
# -----------------------------------------------------------------------------

class SessionLogger:
    """Turn-scoped logger that mirrors records to the console and a memory buffer.

    The logger tracks identifiers via contextvars:
    - conversation_id: Conversation the active turn belongs to.
    - turn_id: Per-turn unique id used to key the in-memory log buffer.
    - log_level: Minimum level written to the console for this turn.

    Cleanup is explicit: owners call ``cleanup`` periodically; there is no
    background task pruning buffers.

    Attributes:
        logs: Map of turn_id -> fixed-size deque of structured log events.
    """

    conversation_id: ContextVar[Optional[str]] = ContextVar("conversation_id", default=None)
    turn_id: ContextVar[Optional[str]] = ContextVar("turn_id", default=None)
    log_level: ContextVar[int] = ContextVar("log_level", default=logging.INFO)
    max_lines: int = 2000
    logs: Dict[str, deque[dict[str, Any]]] = {}
    _turn_last_seen: Dict[str, float] = {}
    _state_lock = threading.Lock()
    _console_formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @staticmethod
    def _classify_event_type(message: str) -> str:
        msg = (message or "").lstrip()
        if msg.startswith("Dropped incomplete frame at stream end"):
            return "stream.drain"
        if msg.startswith(("Skipped ", "Discarding ", "Malformed frame")):
            return "stream.drop"
        if msg.startswith(("Frame ", "Event ")):
            return "stream.frame"
        if msg.startswith(("HTTP ", "Transport ", "Connection ", "Opening stream")):
            return "transport"
        return "session"

    @classmethod
    def _build_event(cls, record: logging.LogRecord) -> dict[str, Any]:
        """Return a structured log event extracted from a LogRecord."""
        message = record.getMessage()
        event: dict[str, Any] = {
            "created": float(getattr(record, "created", time.time())),
            "level": record.levelname,
            "logger": record.name,
            "turn_id": getattr(record, "turn_id", None),
            "conversation_id": getattr(record, "conversation_id", None),
            "event_type": cls._classify_event_type(message),
            "func": record.funcName,
            "lineno": record.lineno,
            "message": message,
        }
        if record.exc_text:
            event["exception"] = {"text": str(record.exc_text)}
        elif record.exc_info:
            event["exception"] = {"text": "".join(traceback.format_exception(*record.exc_info))}
        return event

    @classmethod
    def format_event_as_text(cls, event: dict[str, Any]) -> str:
        """Render a buffered event as a single log line for debug dumps."""
        created = float(event.get("created") or time.time())
        base = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(created))
        msecs = int((created - int(created)) * 1000)
        level = str(event.get("level") or "INFO")
        conversation = str(event.get("conversation_id") or "-")
        return f"{base},{msecs:03d} [{level}] [conversation={conversation}] {event.get('message') or ''}"

    @classmethod
    def get_logger(cls, name: str = __name__) -> logging.Logger:
        """Create a logger wired to the current SessionLogger context.

        Args:
            name: Logger name; defaults to the current module name.

        Returns:
            logging.Logger: A logger that stamps turn metadata onto each record,
            writes console lines at the per-turn level, and appends structured
            events to ``SessionLogger.logs[turn_id]``. Records still propagate to
            the root logger so host applications (and pytest's caplog) see them.
        """
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)
        if getattr(logger, "_session_logger_installed", False):
            return logger

        def _filter(record: logging.LogRecord) -> bool:
            record.conversation_id = cls.conversation_id.get()
            record.turn_id = cls.turn_id.get()
            record.session_log_level = cls.log_level.get()
            return True

        logger.addFilter(_filter)

        handler = logging.Handler()
        handler.emit = cls.process_record  # type: ignore[method-assign]
        logger.addHandler(handler)
        logger.propagate = True
        logger._session_logger_installed = True  # type: ignore[attr-defined]
        return logger

    @classmethod
    @timed
    def set_context(
        cls,
        *,
        conversation_id: Optional[str],
        turn_id: Optional[str],
        level: str | int = logging.INFO,
    ) -> None:
        """Bind the identifiers of the turn running in the current context."""
        cls.conversation_id.set(conversation_id)
        cls.turn_id.set(turn_id)
        cls.log_level.set(logging.getLevelName(level) if isinstance(level, str) else level)

    @classmethod
    def set_max_lines(cls, value: int) -> None:
        """Set the maximum in-memory events retained per turn."""
        cls.max_lines = max(100, min(200_000, int(value)))

    @classmethod
    def process_record(cls, record: logging.LogRecord) -> None:
        try:
            session_log_level = getattr(record, "session_log_level", logging.INFO)
            if record.levelno >= int(session_log_level):
                sys.stdout.write(cls._console_formatter.format(record) + "\n")
                sys.stdout.flush()
            turn_id = getattr(record, "turn_id", None)
            if not turn_id:
                return
            event = cls._build_event(record)
            with cls._state_lock:
                buffer = cls.logs.get(turn_id)
                if buffer is None or buffer.maxlen != cls.max_lines:
                    buffer = deque(buffer or (), maxlen=cls.max_lines)
                    cls.logs[turn_id] = buffer
                buffer.append(event)
                cls._turn_last_seen[turn_id] = time.time()
        except Exception:
            # Logging must never break a live stream.
            return

    @classmethod
    def events_for(cls, turn_id: str) -> list[dict[str, Any]]:
        with cls._state_lock:
            return list(cls.logs.get(turn_id) or ())

    @classmethod
    @timed
    def cleanup(cls, max_age_seconds: float = 3600) -> None:
        """Remove stale turn buffers to avoid unbounded growth."""
        cutoff = time.time() - max_age_seconds
        with cls._state_lock:
            stale = [tid for tid, ts in cls._turn_last_seen.items() if ts < cutoff]
            for tid in stale:
                cls.logs.pop(tid, None)
                cls._turn_last_seen.pop(tid, None)
