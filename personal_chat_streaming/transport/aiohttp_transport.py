"""HTTP transport for streaming turns.

The session controller only depends on the two protocols defined here:
``StreamTransport.open`` starts a turn and returns a ``StreamResponse`` whose
``iter_text`` yields decoded text chunks in arrival order and whose ``close``
aborts the connection immediately.

``AiohttpTransport`` is the production implementation. It decodes UTF-8
incrementally so a multi-byte character split across two network reads is
never mangled, applies the valve timeouts, and retries connection setup with
tenacity when CONNECT_RETRIES is above zero. Nothing is retried once a
response has been received.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol, Union

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..core.config import StreamingValves
from ..core.errors import TransportError, _is_retryable_connect_error
from ..core.timing_logger import timed, timing_mark
from .request import StreamRequest, TurnInput, build_stream_request

LOGGER = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class StreamResponse(Protocol):
    status: int
    reason: Optional[str]
    content_type: Optional[str]

    async def read_text(self) -> str:
        ...

    def iter_text(self) -> AsyncIterator[str]:
        ...

    def close(self) -> None:
        ...


class StreamTransport(Protocol):
    async def open(self, turn_input: TurnInput) -> StreamResponse:
        ...


class AiohttpStreamResponse:
    """StreamResponse backed by an ``aiohttp.ClientResponse``."""

    def __init__(self, response: aiohttp.ClientResponse, *, chunk_size: int = 4096) -> None:
        self._response = response
        self._chunk_size = chunk_size
        self.status = response.status
        self.reason = response.reason
        self.content_type = response.headers.get(aiohttp.hdrs.CONTENT_TYPE)

    async def read_text(self) -> str:
        return await self._response.text(errors="replace")

    async def iter_text(self) -> AsyncIterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        first = True
        async for chunk in self._response.content.iter_chunked(self._chunk_size):
            if first:
                timing_mark("first_chunk")
                first = False
            text = decoder.decode(chunk)
            if text:
                yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    def close(self) -> None:
        self._response.close()

    @property
    def closed(self) -> bool:
        return self._response.closed


class AiohttpTransport:
    """Opens streaming turns over an aiohttp ClientSession.

    Args:
        valves: Client configuration (endpoint, timeouts, retries).
        session: Optional shared ClientSession. When omitted, the transport
            creates one lazily and closes it in ``aclose``.
        token_provider: Optional sync or async callable returning a bearer token.
    """

    def __init__(
        self,
        valves: Optional[StreamingValves] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        token_provider: Optional[TokenProvider] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.valves = valves or StreamingValves()
        self._session = session
        self._owns_session = session is None
        self._token_provider = token_provider
        self.logger = logger or LOGGER

    @timed
    def _create_http_session(self) -> aiohttp.ClientSession:
        """Return a ClientSession with the valve timeouts applied."""
        valves = self.valves
        connect_timeout = float(valves.HTTP_CONNECT_TIMEOUT_SECONDS)
        total_timeout = float(valves.HTTP_TOTAL_TIMEOUT_SECONDS) if valves.HTTP_TOTAL_TIMEOUT_SECONDS else None
        sock_read = float(valves.HTTP_SOCK_READ_SECONDS) if total_timeout is None else None
        timeout = aiohttp.ClientTimeout(total=total_timeout, connect=connect_timeout, sock_read=sock_read)
        self.logger.debug(
            "HTTP timeouts: connect=%ss total=%s sock_read=%s",
            connect_timeout,
            total_timeout if total_timeout is not None else "disabled",
            sock_read if sock_read is not None else "disabled",
        )
        connector = aiohttp.TCPConnector(limit_per_host=10, keepalive_timeout=75, ttl_dns_cache=300)
        return aiohttp.ClientSession(connector=connector, timeout=timeout, json_serialize=json.dumps)

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = self._create_http_session()
            self._owns_session = True
        return self._session

    async def _resolve_token(self) -> Optional[str]:
        if self._token_provider is None:
            return None
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return token or None

    @timed
    async def open(self, turn_input: TurnInput) -> AiohttpStreamResponse:
        """POST the turn and return the response as soon as headers arrive."""
        request = build_stream_request(turn_input, self.valves, await self._resolve_token())
        session = self._ensure_session()
        self.logger.debug("Opening stream %s %s", request.method, request.url)

        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.valves.CONNECT_RETRIES + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception(_is_retryable_connect_error),
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                response = await self._send(session, request)
                return AiohttpStreamResponse(response, chunk_size=self.valves.READ_CHUNK_BYTES)
        raise TransportError("Connection error: no connection attempt was made")

    async def _send(self, session: aiohttp.ClientSession, request: StreamRequest) -> aiohttp.ClientResponse:
        try:
            return await session.request(
                request.method,
                request.url,
                json=request.json_body,
                headers=request.headers,
            )
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as exc:
            self.logger.warning("Connection attempt to %s failed: %s", request.url, exc)
            raise

    async def aclose(self) -> None:
        """Close the ClientSession if this transport created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
