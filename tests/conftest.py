"""Shared fakes and fixtures for the streaming client tests."""

from __future__ import annotations

import asyncio
import json
from dataclasses import fields
from typing import Any

import pytest

from personal_chat_streaming.core.config import StreamingValves
from personal_chat_streaming.core.logging_system import SessionLogger
from personal_chat_streaming.streaming.callbacks import StreamingCallbacks
from personal_chat_streaming.transport.request import TurnInput


def sse(event: str, data: Any | None = None) -> str:
    """Render one wire frame, including its trailing blank line."""
    payload = data if isinstance(data, str) else json.dumps(data if data is not None else {})
    return f"event: {event}\ndata: {payload}\n\n"


class FakeStreamResponse:
    """In-memory StreamResponse with configurable chunk timing and failures."""

    def __init__(
        self,
        chunks: list[str] | None = None,
        *,
        status: int = 200,
        reason: str = "OK",
        content_type: str | None = "text/event-stream",
        body: str = "",
        delays: list[float] | None = None,
        raise_after: int | None = None,
        exception: Exception | None = None,
    ) -> None:
        self.chunks = list(chunks or [])
        self.status = status
        self.reason = reason
        self.content_type = content_type
        self.body = body
        self._delays = delays or []
        self._raise_after = raise_after
        self._exception = exception or RuntimeError("Simulated stream error")
        self.closed = False
        self.close_calls = 0
        self.chunks_yielded = 0

    async def read_text(self) -> str:
        return self.body

    async def iter_text(self):
        for idx, chunk in enumerate(self.chunks):
            if self._raise_after is not None and idx >= self._raise_after:
                raise self._exception
            if idx < len(self._delays):
                await asyncio.sleep(self._delays[idx])
            else:
                await asyncio.sleep(0)
            self.chunks_yielded += 1
            yield chunk
        if self._raise_after is not None and self._raise_after >= len(self.chunks):
            raise self._exception

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1


class FakeTransport:
    """StreamTransport returning queued FakeStreamResponses in order."""

    def __init__(
        self,
        *responses: FakeStreamResponse,
        exception: Exception | None = None,
        open_delay: float = 0.0,
        open_delays: list[float] | None = None,
    ) -> None:
        self.responses = list(responses)
        self.exception = exception
        self.open_delay = open_delay
        self.open_delays = list(open_delays or [])
        self.opened: list[TurnInput] = []

    async def open(self, turn_input: TurnInput) -> FakeStreamResponse:
        self.opened.append(turn_input)
        delay = self.open_delays.pop(0) if self.open_delays else self.open_delay
        if delay:
            await asyncio.sleep(delay)
        if self.exception is not None:
            raise self.exception
        return self.responses.pop(0)


class CallbackRecorder:
    """Records every hook invocation as ``(hook_name, *args)``."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        hooks = {f.name: self._make_hook(f.name) for f in fields(StreamingCallbacks)}
        self.callbacks = StreamingCallbacks(**hooks)

    def _make_hook(self, name: str):
        def _record(*args: Any) -> None:
            self.calls.append((name, *args))

        return _record

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def valves() -> StreamingValves:
    return StreamingValves(
        BASE_URL="http://chat.test",
        LOG_LEVEL="WARNING",
        TOOL_CALL_CLEAR_DELAY_SECONDS=0,
    )


@pytest.fixture
def turn_input() -> TurnInput:
    return TurnInput(conversation_id="conv-1", user_id="user-1", content="Plan a trip")


@pytest.fixture(autouse=True)
def _reset_session_logs():
    yield
    SessionLogger.logs.clear()
    SessionLogger._turn_last_seen.clear()
