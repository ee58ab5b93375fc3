"""Core infrastructure module.

Foundation services required by the streaming pipeline:
- Configuration schema (StreamingValves)
- Error classes and HTTP error body inspection
- Turn-scoped session logging
- Timing instrumentation
- Pure utility functions
"""

from .config import StreamingValves, LOGGER
from .errors import StreamingError, TransportError, ProtocolError
from .logging_system import SessionLogger
from .timing_logger import timed, timing_scope, timing_mark
from .utils import (
    _safe_json_loads,
    _normalize_optional_str,
    _truncate_text,
)

__all__ = [
    "StreamingValves",
    "LOGGER",
    "StreamingError",
    "TransportError",
    "ProtocolError",
    "SessionLogger",
    "timed",
    "timing_scope",
    "timing_mark",
    "_safe_json_loads",
    "_normalize_optional_str",
    "_truncate_text",
]
