"""Streaming response processing subsystem.

This package turns a chunked event stream into ordered turn callbacks:
- frame_parser: splits buffered text into frames plus an unconsumed remainder
- frame_decoder: maps frames to typed events
- turn_state: pure reducer from (state, event) to the next state
- callbacks: caller hook bundle and exception-safe dispatch
- session: the controller that owns one live turn at a time
"""

from .callbacks import CallbackDispatcher, StreamingCallbacks
from .frame_decoder import EventKind, Malformed, decode_frame
from .frame_parser import Frame, ParseResult, parse_frames
from .session import StreamingSession
from .turn_state import ToolCallState, ToolCallStatus, TurnPhase, TurnState, apply_event, begin_turn

__all__ = [
    "CallbackDispatcher",
    "StreamingCallbacks",
    "EventKind",
    "Malformed",
    "decode_frame",
    "Frame",
    "ParseResult",
    "parse_frames",
    "StreamingSession",
    "ToolCallState",
    "ToolCallStatus",
    "TurnPhase",
    "TurnState",
    "apply_event",
    "begin_turn",
]
