"""
OperationStore - abstract interface for operation persistence.

Design Pattern: Adapter Pattern
OperationStore defines the target interface that every storage adapter
implements. Backends (memory, SQLite, Redis) adapt to this interface and
the engine depends only on the abstraction.

Contract:
- Stores hand out copies. Mutating an Operation returned by get() never
  changes the stored record until it is written back.
- compare_and_set() is the single-winner primitive behind resume: it
  writes only if the stored status and revision still match.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pyresume.core.status import OperationStatus
from pyresume.models import Operation


class StorageError(Exception):
    """
    Storage operation failed.

    Raised for connection problems and for contract violations such as
    creating an id that already exists.
    """


class OperationStore(ABC):
    """Persistence contract for Operation records, addressed by id."""

    async def connect(self) -> None:
        """Open connections. Backends that need none inherit this no-op."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def create(self, operation: Operation) -> None:
        """Insert a new operation.

        Raises:
            StorageError: If an operation with the same id exists
        """

    @abstractmethod
    async def get(self, operation_id: str) -> Operation | None:
        """Return a copy of the stored operation, or None if unknown."""

    @abstractmethod
    async def put(self, operation: Operation) -> None:
        """Unconditionally write the operation (insert or replace)."""

    @abstractmethod
    async def compare_and_set(
        self,
        operation: Operation,
        expected_status: OperationStatus,
        expected_revision: int,
    ) -> bool:
        """Write `operation` only if the stored record is unchanged.

        Returns:
            True if the stored record had `expected_status` and
            `expected_revision` and was replaced, False otherwise
        """

    @abstractmethod
    async def list_suspended(self) -> list[Operation]:
        """Return all operations currently in the suspended state."""

    @abstractmethod
    async def delete(self, operation_id: str) -> bool:
        """Delete an operation with its cursor. Returns True if it existed."""

    @abstractmethod
    async def reset(self) -> None:
        """Delete every stored operation."""

    async def __aenter__(self) -> OperationStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
