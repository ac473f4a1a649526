"""In-memory storage implementation for pyresume.

Design Pattern: Adapter Pattern
InMemoryOperationStore adapts a dictionary to the OperationStore interface.

Records are kept as JSON-shaped snapshots (Operation.to_dict()), so the
store behaves like a real backend: every read returns a fresh object and
values that cannot be persisted fail here too.

Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
import copy
import json
from typing import Any

from pyresume.core.status import OperationStatus
from pyresume.models import Operation
from pyresume.storage.base import OperationStore, StorageError


class InMemoryOperationStore(OperationStore):
    """In-memory storage for tests and single-process use.

    Can be substituted for SqliteOperationStore without changing client code.

    Usage:
        store = InMemoryOperationStore()
        engine = FlowEngine(store, flows=[my_flow])
    """

    def __init__(self):
        # Storage: {operation_id: snapshot dict}
        self._operations: dict[str, dict[str, Any]] = {}

        # Lock for consistency of read-compare-write sequences
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return "InMemoryOperationStore"

    @staticmethod
    def _snapshot(operation: Operation) -> dict[str, Any]:
        try:
            # Round-trip through JSON so non-serializable values fail on write
            return json.loads(json.dumps(operation.to_dict()))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Operation {operation.id} is not JSON serializable: {e}") from e

    async def create(self, operation: Operation) -> None:
        snapshot = self._snapshot(operation)
        async with self._lock:
            if operation.id in self._operations:
                raise StorageError(f"Operation already exists: {operation.id}")
            self._operations[operation.id] = snapshot

    async def get(self, operation_id: str) -> Operation | None:
        async with self._lock:
            snapshot = self._operations.get(operation_id)
            if snapshot is None:
                return None
            return Operation.from_dict(copy.deepcopy(snapshot))

    async def put(self, operation: Operation) -> None:
        snapshot = self._snapshot(operation)
        async with self._lock:
            self._operations[operation.id] = snapshot

    async def compare_and_set(
        self,
        operation: Operation,
        expected_status: OperationStatus,
        expected_revision: int,
    ) -> bool:
        snapshot = self._snapshot(operation)
        async with self._lock:
            current = self._operations.get(operation.id)
            if current is None:
                return False
            if current["status"] != expected_status.value:
                return False
            if int(current.get("revision", 0)) != expected_revision:
                return False
            self._operations[operation.id] = snapshot
            return True

    async def list_suspended(self) -> list[Operation]:
        async with self._lock:
            return [
                Operation.from_dict(copy.deepcopy(snapshot))
                for snapshot in self._operations.values()
                if snapshot["status"] == OperationStatus.SUSPENDED.value
            ]

    async def delete(self, operation_id: str) -> bool:
        async with self._lock:
            return self._operations.pop(operation_id, None) is not None

    async def reset(self) -> None:
        async with self._lock:
            self._operations.clear()

    def __len__(self) -> int:
        return len(self._operations)
