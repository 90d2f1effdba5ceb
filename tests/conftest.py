"""Pytest configuration and shared fixtures."""

import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from playtime_analytics.backends import MemoryBackend, SQLiteBackend
from playtime_analytics.store import SessionStore
from playtime_analytics.timeutils import MS_PER_MINUTE, to_ms

# Mid-June keeps every test day clear of DST transitions
NOW = datetime(2025, 6, 18, 14, 0, 0)  # a Wednesday


def ms(*args) -> int:
    """Local datetime components -> epoch milliseconds."""
    return to_ms(datetime(*args))


class FakeClock:
    """Settable clock returning epoch milliseconds."""

    def __init__(self, start: int):
        self.value = start

    def __call__(self) -> int:
        return self.value

    def set(self, value: int | datetime) -> None:
        self.value = to_ms(value) if isinstance(value, datetime) else value

    def advance(self, minutes: float = 0, ms: int = 0) -> None:
        self.value += int(minutes * MS_PER_MINUTE) + ms


@pytest.fixture
def clock():
    """Clock pinned to NOW."""
    return FakeClock(to_ms(NOW))


@pytest.fixture
def memory_backend():
    """Empty in-memory backend."""
    return MemoryBackend()


@pytest.fixture
async def store(memory_backend, clock):
    """Initialized store over the memory backend.

    This is the base fixture for store-dependent tests.
    """
    s = SessionStore(memory_backend, clock=clock)
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def sqlite_backend():
    """SQLite backend in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield SQLiteBackend(Path(tmpdir) / "test.db")


@pytest.fixture
def play(store, clock):
    """Record a completed session, then put the clock back where it was.

    Usage: play("map-a", datetime(2025, 6, 18, 9, 0), minutes=30)
    """

    def _play(map_id: str, start: datetime, minutes: float, metadata: dict | None = None):
        saved = clock.value
        clock.set(start)
        store.start(map_id, metadata)
        clock.advance(minutes)
        session = store.stop()
        clock.set(saved)
        return session

    return _play
