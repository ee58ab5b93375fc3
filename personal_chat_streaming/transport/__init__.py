"""Transport collaborator: request construction and the aiohttp implementation."""

from .aiohttp_transport import AiohttpStreamResponse, AiohttpTransport, StreamResponse, StreamTransport
from .request import StreamRequest, TurnInput, build_stream_request

__all__ = [
    "AiohttpStreamResponse",
    "AiohttpTransport",
    "StreamResponse",
    "StreamTransport",
    "StreamRequest",
    "TurnInput",
    "build_stream_request",
]
