import json
from contextlib import asynccontextmanager
from typing import Any

import pytest


class FakeStreamResponse:
    def __init__(self, status_code: int, chunks: list[bytes]):
        self.status_code = status_code
        self._chunks = chunks

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    async def aread(self) -> bytes:
        return b"".join(self._chunks)

    async def aiter_bytes(self):
        for chunk in self._chunks:
            yield chunk


class FakeStreamClient:
    """Stands in for ``httpx.AsyncClient.stream``; replays one response per call."""

    def __init__(self, responses: list[tuple[int, list[bytes]]]):
        self._responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    @asynccontextmanager
    async def stream(self, method: str, url: str, json: Any = None, headers: Any = None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers})
        status_code, chunks = self._responses.pop(0)
        yield FakeStreamResponse(status_code, chunks)

    async def aclose(self) -> None:
        return None


def sse(*events: dict[str, Any], delimiter: bytes = b"\n\n", named: bool = False) -> bytes:
    """Encode events as SSE frames."""
    frames = []
    for event in events:
        data = json.dumps(event).encode("utf-8")
        prefix = f"event: {event.get('type')}\n".encode("utf-8") if named else b""
        frames.append(prefix + b"data: " + data + delimiter)
    return b"".join(frames)


def split_bytes(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record backoff delays instead of sleeping."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("agentloop.llm.base.asyncio.sleep", _sleep)
    return delays


@pytest.fixture
def make_client():
    return FakeStreamClient


@pytest.fixture
def encode_sse():
    return sse


@pytest.fixture
def chunked():
    return split_bytes
