"""Function timing instrumentation with direct file output.

Provides:
- @timed decorator for automatic function entrance/exit logging
- timing_scope() context manager for code block timing
- timing_mark() for point-in-time events such as "first chunk received"
- Direct JSONL file output (configured via the TIMING_LOG_FILE valve)

Timing is scoped to a streaming turn: ``set_timing_context`` stores the turn id
and the enabled flag in context variables, so concurrent sessions on the same
event loop never mix their records.

Usage:
    from .core.timing_logger import timed, timing_scope, timing_mark

    @timed
    async def open_stream():
        with timing_scope("http_post"):
            ...
        timing_mark("first_chunk")
"""

from __future__ import annotations

import datetime
import functools
import inspect
import json
import threading
import time
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, TypeVar

# -----------------------------------------------------------------------------
# Global file output state
# -----------------------------------------------------------------------------

_timing_file_lock = threading.Lock()
_timing_file_path: Optional[Path] = None
_timing_file_handle: Optional[Any] = None

# Per-turn buffer so tests and debug dumps can read back what was recorded
_timing_events: Dict[str, Deque[Dict[str, Any]]] = {}
_timing_lock = threading.Lock()

_timing_enabled: ContextVar[bool] = ContextVar("timing_enabled", default=False)
_timing_turn_id: ContextVar[Optional[str]] = ContextVar("timing_turn_id", default=None)

MAX_TIMING_EVENTS = 10000
_PACKAGE_PREFIX = "personal_chat_streaming."


@dataclass(slots=True)
class TimingEvent:
    """Single timing event for entrance, exit or mark."""

    ts: float  # time.perf_counter()
    wall_ts: float  # time.time()
    event: str
    label: str
    elapsed_ms: Optional[float] = None  # exit events only


def _format_iso_utc(wall_ts: float) -> str:
    dt = datetime.datetime.fromtimestamp(wall_ts, tz=datetime.timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _record_event(event: TimingEvent) -> None:
    """Write one timing event to the configured file and the per-turn buffer."""
    if not _timing_enabled.get():
        return
    turn_id = _timing_turn_id.get()
    if not turn_id:
        return

    record: Dict[str, Any] = {
        "ts": _format_iso_utc(event.wall_ts),
        "perf_ts": round(event.ts, 6),
        "event": event.event,
        "label": event.label,
        "turn_id": turn_id,
    }
    if event.elapsed_ms is not None:
        record["elapsed_ms"] = round(event.elapsed_ms, 3)

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n")
                _timing_file_handle.flush()
            except OSError:
                pass  # timing output must never disturb a live stream

    with _timing_lock:
        if turn_id not in _timing_events:
            _timing_events[turn_id] = deque(maxlen=MAX_TIMING_EVENTS)
        _timing_events[turn_id].append(record)


# -----------------------------------------------------------------------------
# Public API: File configuration
# -----------------------------------------------------------------------------


def configure_timing_file(file_path: str) -> bool:
    """Open ``file_path`` for appending timing records.

    Creates parent directories automatically. Returns False when the file could
    not be opened; timing then only fills the in-memory buffer.
    """
    global _timing_file_path, _timing_file_handle

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.close()
            except OSError:
                pass
            _timing_file_handle = None

        try:
            path = Path(file_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            _timing_file_handle = open(path, "a", encoding="utf-8")
            _timing_file_path = path
            return True
        except OSError:
            _timing_file_path = None
            _timing_file_handle = None
            return False


def ensure_timing_file_configured(file_path: str) -> bool:
    """Open the timing file lazily, reopening it only when the path changed."""
    with _timing_file_lock:
        if _timing_file_handle is not None and _timing_file_path is not None:
            if str(_timing_file_path) == str(Path(file_path)):
                return True
    return configure_timing_file(file_path)


def close_timing_file() -> None:
    """Close the timing log file. Safe to call multiple times."""
    global _timing_file_handle, _timing_file_path

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.close()
            except OSError:
                pass
            _timing_file_handle = None
            _timing_file_path = None


# -----------------------------------------------------------------------------
# Public API: Context management
# -----------------------------------------------------------------------------


def set_timing_context(turn_id: str, enabled: bool) -> None:
    """Enable or disable timing for the turn running in the current context."""
    _timing_turn_id.set(turn_id)
    _timing_enabled.set(enabled)


def clear_timing_context() -> None:
    _timing_turn_id.set(None)
    _timing_enabled.set(False)


def get_timing_events(turn_id: str) -> List[Dict[str, Any]]:
    """Return the timing records captured for ``turn_id``."""
    with _timing_lock:
        buffer = _timing_events.get(turn_id)
        return list(buffer) if buffer else []


def clear_timing_events(turn_id: str) -> None:
    with _timing_lock:
        _timing_events.pop(turn_id, None)


def timing_mark(label: str) -> None:
    """Record a single point-in-time event (e.g. ``first_chunk``)."""
    if not _timing_enabled.get():
        return
    _record_event(TimingEvent(ts=time.perf_counter(), wall_ts=time.time(), event="mark", label=label))


@contextmanager
def timing_scope(label: str):
    """Record enter/exit events with elapsed time around a code block."""
    if not _timing_enabled.get():
        yield
        return
    start_perf = time.perf_counter()
    _record_event(TimingEvent(ts=start_perf, wall_ts=time.time(), event="enter", label=label))
    try:
        yield
    finally:
        end_perf = time.perf_counter()
        _record_event(
            TimingEvent(
                ts=end_perf,
                wall_ts=time.time(),
                event="exit",
                label=label,
                elapsed_ms=(end_perf - start_perf) * 1000,
            )
        )


# -----------------------------------------------------------------------------
# Public API: @timed decorator
# -----------------------------------------------------------------------------

F = TypeVar("F", bound=Callable[..., Any])


def timed(func: F) -> F:
    """Decorator for timing function entrance/exit.

    Works with both sync and async functions and labels records with the
    module-relative qualified name. When timing is disabled for the current
    context the wrapper calls straight through.
    """
    module = getattr(func, "__module__", "") or ""
    qualname = getattr(func, "__qualname__", "") or getattr(func, "__name__", "unknown")
    if module.startswith(_PACKAGE_PREFIX):
        module = module[len(_PACKAGE_PREFIX) :]
    label = f"{module}.{qualname}" if module else qualname

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _timing_enabled.get():
                return await func(*args, **kwargs)
            with timing_scope(label):
                return await func(*args, **kwargs)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        if not _timing_enabled.get():
            return func(*args, **kwargs)
        with timing_scope(label):
            return func(*args, **kwargs)

    return sync_wrapper  # type: ignore[return-value]
