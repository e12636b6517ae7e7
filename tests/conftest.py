"""Pytest configuration and fixtures."""

import random
from collections.abc import Generator
from typing import Any

import pytest

from leasecache.cache.backoff import WaitState
from leasecache.cache.handle import CacheHandle
from leasecache.cache.memory import InMemoryStore


class FakeClock:
    """Monotonic clock the tests can move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """Log callback that keeps every event it is given."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, float | None, Any]] = []

    def __call__(self, event: str, key: str, elapsed_ms: float | None, detail: Any) -> None:
        self.events.append((event, key, elapsed_ms, detail))

    @property
    def names(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    """Create an in-memory store driven by the fake clock."""
    return InMemoryStore(clock=clock)


@pytest.fixture
def recorder() -> EventRecorder:
    """Create an event recorder."""
    return EventRecorder()


@pytest.fixture
def cache(store: InMemoryStore, recorder: EventRecorder) -> CacheHandle:
    """Create a handle on the fake-clock store."""
    return CacheHandle(
        store,
        namespace="test",
        default_ttl=60,
        async_timeout=30,
        log=recorder,
        rng=random.Random(42),
    )


@pytest.fixture
def fast_sleep(clock: FakeClock, monkeypatch: pytest.MonkeyPatch) -> Generator[FakeClock, None, None]:
    """Make backoff sleeps advance the fake clock instead of real time."""
    import asyncio

    real_sleep = asyncio.sleep

    async def fake_sleep(self: WaitState) -> None:
        clock.sleeps.append(self.delay / 1000)
        clock.advance(self.delay / 1000)
        await real_sleep(0)

    monkeypatch.setattr(WaitState, "sleep", fake_sleep)
    yield clock
