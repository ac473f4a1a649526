"""Storage backends for durable operation persistence.

Provides multiple storage implementations behind a common interface:
    - OperationStore: Abstract interface
    - InMemoryOperationStore: In-memory storage for testing
    - SqliteOperationStore: SQLite-backed storage
    - RedisOperationStore: Redis-backed distributed storage

Design: Adapter Pattern + Dependency Inversion
    The engine depends on OperationStore only, so backends can be swapped
    without touching flow code.
"""

from pyresume.storage.base import OperationStore, StorageError

# Backends are imported lazily so that importing pyresume does not pull in
# aiosqlite or redis until a backend is actually used.


def __getattr__(name: str):
    """Lazy import storage implementations."""
    if name == "InMemoryOperationStore":
        from pyresume.storage.memory import InMemoryOperationStore

        return InMemoryOperationStore
    elif name == "RedisOperationStore":
        from pyresume.storage.redis import RedisOperationStore

        return RedisOperationStore
    elif name == "SqliteOperationStore":
        from pyresume.storage.sqlite import SqliteOperationStore

        return SqliteOperationStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "OperationStore",
    "StorageError",
    "InMemoryOperationStore",
    "SqliteOperationStore",
    "RedisOperationStore",
]
