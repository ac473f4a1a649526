"""
Pytest configuration and fixtures for pyresume tests.

Provides reusable fixtures for storage backends, a controllable clock,
engines wired to both, and small helpers shared by the test modules.
"""

import shutil
import tempfile
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from pyresume import FlowEngine
from pyresume.storage import InMemoryOperationStore, SqliteOperationStore


class FakeClock:
    """Manually advanced UTC clock for timer tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int = 0, seconds: float = 0) -> datetime:
        self.now += timedelta(milliseconds=milliseconds, seconds=seconds)
        return self.now


class Calls:
    """Counts invocations of fake step functions."""

    def __init__(self):
        self.count = 0
        self.args: list = []

    def returning(self, value):
        async def fn():
            self.count += 1
            return value

        return fn

    def raising(self, error: Exception):
        async def fn():
            self.count += 1
            raise error

        return fn


@pytest.fixture
async def in_memory_store() -> AsyncGenerator[InMemoryOperationStore, None]:
    """Async in-memory store fixture with automatic cleanup."""
    store = InMemoryOperationStore()
    yield store
    await store.reset()


@pytest.fixture
async def sqlite_memory_store() -> AsyncGenerator[SqliteOperationStore, None]:
    """Async SQLite in-memory store fixture with automatic cleanup."""
    store = SqliteOperationStore(":memory:")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "flows.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def calls() -> Calls:
    return Calls()


@pytest.fixture
def engine(in_memory_store: InMemoryOperationStore, clock: FakeClock) -> FlowEngine:
    """Engine over an in-memory store with a fake clock."""
    return FlowEngine(in_memory_store, clock=clock)
