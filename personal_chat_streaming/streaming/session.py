"""Session controller for streaming turns.

``StreamingSession`` owns at most one live turn. For each turn it opens the
transport, feeds decoded text chunks through the frame parser, the frame
decoder and the turn reducer, and dispatches exactly one callback per applied
event, in arrival order.

Guarantees:
- Starting a new turn aborts the previous one before any new chunk is read,
  so callbacks from two turns never interleave.
- After ``cancel`` (or supersession) no further callbacks fire for that turn
  except its single ``on_streaming_complete``.
- Once ``done`` or ``error`` is applied the response is closed and anything
  after it is ignored.
- When the transport closes, leftover buffer text gets one final parse pass so
  a last frame without its trailing blank line is not lost.
- Transport failures produce exactly one ``on_error``; nothing is raised out
  of ``start`` except ``asyncio.CancelledError`` when the awaiting task itself
  is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.config import UNTERMINATED_STREAM_MESSAGE, StreamingValves
from ..core.errors import (
    ProtocolError,
    StreamingError,
    TransportError,
    _build_transport_error,
    _transport_error_from_exception,
)
from ..core.logging_system import SessionLogger
from ..core.timing_logger import (
    clear_timing_context,
    clear_timing_events,
    ensure_timing_file_configured,
    set_timing_context,
    timed,
)
from ..core.utils import _new_turn_id
from ..transport.aiohttp_transport import StreamResponse, StreamTransport
from ..transport.request import TurnInput
from .callbacks import CallbackDispatcher, StreamingCallbacks
from .frame_decoder import DecodedEvent, ErrorEvent, Malformed, ToolCallEndEvent, decode_frame
from .frame_parser import FRAME_DELIMITER, Frame, parse_frames
from .turn_state import (
    ToolCallState,
    TurnState,
    apply_event,
    begin_turn,
    clear_tool_call,
    fail_turn,
    finish_turn,
)

LOGGER = SessionLogger.get_logger(__name__)


@dataclass(slots=True)
class _ActiveTurn:
    """Bookkeeping for one turn; discarded wholesale when the next turn starts."""

    turn_id: str
    state: TurnState
    cancelled: bool = False
    completed: bool = False
    response: Optional[StreamResponse] = None
    clear_handle: Optional[asyncio.TimerHandle] = None
    open_task: Optional[asyncio.Task] = None
    error: Optional[StreamingError] = None

    def cancel_pending_clear(self) -> None:
        if self.clear_handle is not None:
            self.clear_handle.cancel()
            self.clear_handle = None


class StreamingSession:
    """Runs streaming turns for one conversation screen.

    Instances are independent of each other; a single instance must only be
    driven from one event loop.
    """

    def __init__(
        self,
        transport: StreamTransport,
        callbacks: Optional[StreamingCallbacks] = None,
        *,
        valves: Optional[StreamingValves] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._transport = transport
        self.valves = valves or StreamingValves()
        self.logger = logger or LOGGER
        self._dispatcher = CallbackDispatcher(callbacks, logger=self.logger)
        self._turn: Optional[_ActiveTurn] = None
        SessionLogger.set_max_lines(self.valves.SESSION_LOG_MAX_LINES)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> TurnState:
        """State of the current (or most recent) turn; a fresh idle state after ``reset``."""
        return self._turn.state if self._turn is not None else TurnState()

    @property
    def is_streaming(self) -> bool:
        return self._turn is not None and not self._turn.completed

    @property
    def last_error(self) -> Optional[StreamingError]:
        """Why the current turn failed: ProtocolError for server ``error`` events, TransportError otherwise."""
        return self._turn.error if self._turn is not None else None

    @property
    def callbacks(self) -> StreamingCallbacks:
        return self._dispatcher.callbacks

    async def start(self, turn_input: TurnInput) -> TurnState:
        """Stream one turn to completion and return its final state.

        Any turn still in flight is superseded first. Resolves when the turn
        reaches TERMINAL or is cancelled.
        """
        previous = self._turn
        if previous is not None and not previous.completed:
            self._abort(previous, "superseded by a new turn")

        turn_id = _new_turn_id()
        turn = _ActiveTurn(turn_id=turn_id, state=begin_turn(turn_id))
        self._turn = turn

        SessionLogger.set_context(
            conversation_id=turn_input.conversation_id,
            turn_id=turn_id,
            level=self.valves.LOG_LEVEL,
        )
        if self.valves.ENABLE_TIMING_LOG:
            ensure_timing_file_configured(self.valves.TIMING_LOG_FILE)
        set_timing_context(turn_id, self.valves.ENABLE_TIMING_LOG)

        self.logger.info("Starting turn %s for conversation %s", turn_id, turn_input.conversation_id)
        try:
            await self._run_turn(turn, turn_input)
        except asyncio.CancelledError:
            if not turn.completed:
                self._abort(turn, "awaiting task cancelled")
            raise
        finally:
            self._finalize(turn)
            self._release_buffers(turn)
            clear_timing_context()
        return turn.state

    def cancel(self) -> None:
        """Abort the active turn. Silent apart from ``on_streaming_complete``."""
        turn = self._turn
        if turn is None or turn.completed:
            return
        self._abort(turn, "cancelled by caller")

    def reset(self) -> None:
        """Forget the current turn without touching its transport.

        Call ``cancel`` first if a turn is still streaming; a reset turn keeps
        running detached and its callbacks still fire.
        """
        turn = self._turn
        if turn is not None:
            turn.cancel_pending_clear()
            if not turn.completed:
                self.logger.warning("Session reset while turn %s is still streaming", turn.turn_id)
        self._turn = None

    # ------------------------------------------------------------------
    # Turn pipeline
    # ------------------------------------------------------------------

    @timed
    async def _run_turn(self, turn: _ActiveTurn, turn_input: TurnInput) -> None:
        turn.open_task = asyncio.ensure_future(self._transport.open(turn_input))
        try:
            response = await turn.open_task
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if turn.cancelled and (task is None or not task.cancelling()):
                self.logger.debug("Connect aborted for turn %s", turn.turn_id)
                return
            raise
        except Exception as exc:
            if turn.cancelled:
                return
            self._fail(turn, _transport_error_from_exception(exc), exc)
            return
        finally:
            turn.open_task = None

        if turn.cancelled:
            response.close()
            return
        turn.response = response

        try:
            if not 200 <= response.status < 300:
                body_text = await self._read_error_body(response)
                if turn.cancelled:
                    return
                error = _build_transport_error(
                    response.status,
                    response.reason,
                    body_text,
                    response.content_type,
                    max_chars=self.valves.ERROR_BODY_MAX_CHARS,
                )
                self._fail(turn, error)
                return
            await self._consume(turn, response)
        except Exception as exc:
            if turn.cancelled:
                self.logger.debug("Ignoring transport error after cancellation: %s", exc)
                return
            self._fail(turn, _transport_error_from_exception(exc), exc)
        finally:
            response.close()

    async def _read_error_body(self, response: StreamResponse) -> Optional[str]:
        try:
            return await response.read_text()
        except Exception as exc:
            self.logger.debug("HTTP %s error body unreadable: %s", response.status, exc)
            return None

    async def _consume(self, turn: _ActiveTurn, response: StreamResponse) -> None:
        buffer = ""
        async for chunk in response.iter_text():
            if turn.cancelled:
                self.logger.debug("Discarding chunk received after cancellation (%d chars)", len(chunk))
                return
            result = parse_frames(buffer + chunk)
            buffer = result.remainder
            if result.dropped:
                self.logger.debug("Skipped %d segment(s) without event/data", result.dropped)
            if self._apply_frames(turn, result.frames):
                return

        if turn.cancelled:
            return
        self._drain(turn, buffer)
        if not turn.state.is_terminal and not turn.cancelled:
            self._end_unterminated(turn)

    def _drain(self, turn: _ActiveTurn, buffer: str) -> None:
        """Give leftover text one final parse pass with a closing delimiter."""
        if not buffer.strip():
            return
        result = parse_frames(buffer + FRAME_DELIMITER)
        if result.dropped:
            self.logger.warning(
                "Dropped incomplete frame at stream end (%d chars): %r",
                len(buffer),
                buffer[:80],
            )
        if result.frames:
            self.logger.debug("Recovered %d frame(s) from the final buffer", len(result.frames))
            self._apply_frames(turn, result.frames)

    def _apply_frames(self, turn: _ActiveTurn, frames: list[Frame]) -> bool:
        """Decode and apply ``frames`` in order. Returns True once the turn must stop."""
        for frame in frames:
            if turn.cancelled:
                return True
            decoded = decode_frame(frame)
            if isinstance(decoded, Malformed):
                self.logger.warning(
                    "Malformed frame %r dropped (%s): %r",
                    decoded.event_name,
                    decoded.reason,
                    decoded.raw_data[:200],
                )
                continue
            self._apply(turn, decoded)
            if turn.state.is_terminal:
                return True
        return turn.cancelled

    def _apply(self, turn: _ActiveTurn, event: DecodedEvent) -> None:
        previous_phase = turn.state.phase
        turn.state = apply_event(turn.state, event)
        self.logger.debug(
            "Event %s applied (%s -> %s)",
            event.kind.value,
            previous_phase.value,
            turn.state.phase.value,
        )
        if isinstance(event, ErrorEvent):
            turn.error = ProtocolError(event.message, code=event.code, retryable=event.retryable)
            self.logger.warning("Server reported error (code=%s): %s", event.code, event.message)
        self._dispatcher.dispatch(event, turn.state)
        if isinstance(event, ToolCallEndEvent) and not turn.cancelled:
            self._schedule_tool_call_clear(turn)

    # ------------------------------------------------------------------
    # Tool call clearing
    # ------------------------------------------------------------------

    def _schedule_tool_call_clear(self, turn: _ActiveTurn) -> None:
        expected = turn.state.active_tool_call
        if expected is None:
            return
        turn.cancel_pending_clear()
        delay = self.valves.TOOL_CALL_CLEAR_DELAY_SECONDS
        if delay <= 0:
            turn.state = clear_tool_call(turn.state, expected)
            return
        loop = asyncio.get_running_loop()
        turn.clear_handle = loop.call_later(delay, self._clear_tool_call, turn, expected)

    def _clear_tool_call(self, turn: _ActiveTurn, expected: ToolCallState) -> None:
        turn.clear_handle = None
        if self._turn is not turn or turn.cancelled:
            return
        turn.state = clear_tool_call(turn.state, expected)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _end_unterminated(self, turn: _ActiveTurn) -> None:
        if self.valves.TREAT_UNTERMINATED_STREAM_AS_ERROR:
            self._fail(turn, TransportError(UNTERMINATED_STREAM_MESSAGE))
            return
        self.logger.info("Stream ended without done event, marking turn %s complete", turn.turn_id)
        turn.state = finish_turn(turn.state)

    def _fail(
        self,
        turn: _ActiveTurn,
        error: TransportError,
        cause: Optional[BaseException] = None,
    ) -> None:
        if turn.state.is_terminal:
            return
        if cause is not None and not isinstance(cause, (OSError, asyncio.TimeoutError)):
            self.logger.error("Transport failure in turn %s: %s", turn.turn_id, error, exc_info=cause)
        else:
            self.logger.warning("Transport failure in turn %s: %s", turn.turn_id, error)
        message = str(error)
        turn.error = error
        turn.state = fail_turn(turn.state, message)
        self._dispatcher.invoke("on_error", message)

    def _abort(self, turn: _ActiveTurn, reason: str) -> None:
        turn.cancelled = True
        turn.cancel_pending_clear()
        if turn.open_task is not None and not turn.open_task.done():
            turn.open_task.cancel()
        if turn.response is not None:
            turn.response.close()
        turn.state = finish_turn(turn.state)
        self.logger.info("Turn %s aborted: %s", turn.turn_id, reason)
        self._complete(turn)

    def _finalize(self, turn: _ActiveTurn) -> None:
        if turn.completed:
            return
        turn.cancel_pending_clear()
        turn.state = finish_turn(turn.state)
        self.logger.debug("Turn %s finished in phase %s", turn.turn_id, turn.state.phase.value)
        self._complete(turn)

    def _complete(self, turn: _ActiveTurn) -> None:
        if turn.completed:
            return
        turn.completed = True
        self._dispatcher.invoke("on_streaming_complete")

    def _release_buffers(self, turn: _ActiveTurn) -> None:
        """Drop the turn's in-memory log and timing buffers once it has completed."""
        SessionLogger.turn_id.set(None)
        with SessionLogger._state_lock:
            SessionLogger.logs.pop(turn.turn_id, None)
            SessionLogger._turn_last_seen.pop(turn.turn_id, None)
        SessionLogger.cleanup()
        clear_timing_events(turn.turn_id)
