"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, Callable

import pytest

from literature_stream.domain.entities.events import parse_event
from literature_stream.shared.config import StreamConfig

SEARCH_ID = "search-1"
BASE_TIMESTAMP = 1_700_000_000_000


# ============================================================
# Event / Paper Builders
# ============================================================


@pytest.fixture
def make_frame() -> Callable[..., dict[str, Any]]:
    """Build a wire frame; payload keys are passed camelCase."""
    counter = itertools.count(1)

    def _make(name: str, search_id: str = SEARCH_ID, **data: Any) -> dict[str, Any]:
        payload = {"searchId": search_id, "timestamp": BASE_TIMESTAMP + next(counter), **data}
        return {"event": name, "data": payload}

    return _make


@pytest.fixture
def make_event(make_frame):
    """Build a parsed protocol event."""

    def _make(name: str, search_id: str = SEARCH_ID, **data: Any):
        return parse_event(make_frame(name, search_id, **data))

    return _make


@pytest.fixture
def make_paper() -> Callable[..., dict[str, Any]]:
    """Build a wire paper dict."""

    def _make(paper_id: str, title: str | None = None, **fields: Any) -> dict[str, Any]:
        return {"id": paper_id, "title": title or f"Paper {paper_id}", **fields}

    return _make


@pytest.fixture
def started_event(make_event):
    return make_event("search:started", query="q methodology", correctedQuery="q methodology")


# ============================================================
# Clock
# ============================================================


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================
# Fake WebSocket
# ============================================================

_CLOSE = object()


class FakeConnection:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, frames: list[Any] | None = None) -> None:
        self.incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False
        self.fail_sends = 0
        for frame in frames or []:
            self.feed(frame)

    def feed(self, frame: Any) -> None:
        self.incoming.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self.incoming.put_nowait(_CLOSE)

    def sent_events(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def __aiter__(self) -> FakeConnection:
        return self

    async def __anext__(self) -> Any:
        item = await self.incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item

    async def send(self, frame: str) -> None:
        if self.fail_sends:
            self.fail_sends -= 1
            raise OSError("broken pipe")
        self.sent.append(frame)

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(_CLOSE)


class FakeConnector:
    """Connect callable returning queued outcomes (connections or exceptions)."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeConnection:
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0) if self.outcomes else OSError("connection refused")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    """Backoff sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fast_config() -> StreamConfig:
    return StreamConfig(url="ws://test.invalid/literature", reconnect_attempts=3, open_timeout=1.0)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def eventually():
    """Poll an assertion-free predicate until true (or fail after timeout)."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                pytest.fail("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def new_connection() -> type[FakeConnection]:
    return FakeConnection


@pytest.fixture
def new_connector() -> type[FakeConnector]:
    return FakeConnector
