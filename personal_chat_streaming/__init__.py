"""Incremental streaming client for personal chat turns.

The package is layered bottom-up:
- core: configuration (StreamingValves), errors, session logging, timing, utils
- transport: request construction and the aiohttp stream transport
- streaming: frame parsing, event decoding, the turn reducer and the session controller

Typical use::

    transport = AiohttpTransport(valves, token_provider=get_token)
    session = StreamingSession(transport, StreamingCallbacks(on_content_delta=render), valves=valves)
    await session.start(TurnInput(conversation_id="c1", user_id="u1", content="Hello"))
"""

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("personal-chat-streaming")
except Exception:
    __version__ = "0.1.0"  # Fallback if not installed as package

from .core.config import StreamingValves
from .core.errors import ProtocolError, StreamingError, TransportError
from .streaming.callbacks import StreamingCallbacks
from .streaming.session import StreamingSession
from .streaming.turn_state import TurnPhase, TurnState
from .transport.aiohttp_transport import AiohttpTransport
from .transport.request import TurnInput

__all__ = [
    "__version__",
    "StreamingValves",
    "StreamingError",
    "TransportError",
    "ProtocolError",
    "StreamingCallbacks",
    "StreamingSession",
    "TurnPhase",
    "TurnState",
    "AiohttpTransport",
    "TurnInput",
]
