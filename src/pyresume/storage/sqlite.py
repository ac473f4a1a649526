"""SQLite-backed storage implementation for pyresume.

Design Pattern: Adapter Pattern
SqliteOperationStore adapts an SQLite database to the OperationStore interface.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- One row per operation; the full record is kept as JSON in `data`,
  with status and revision duplicated into columns for conditional updates
- compare_and_set is a single `UPDATE ... WHERE status = ? AND revision = ?`
  so the single-winner rule holds across processes sharing the file
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import aiosqlite

from pyresume.core.status import OperationStatus
from pyresume.models import Operation
from pyresume.storage.base import OperationStore, StorageError


class SqliteOperationStore(OperationStore):
    """SQLite-backed durable storage.

    After __init__, the instance is not yet usable. Call connect() first.
    This follows asyncio best practices (no async in __init__).

    Usage:
        store = SqliteOperationStore("flows.db")
        await store.connect()
        try:
            engine = FlowEngine(store, flows=[my_flow])
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteOperationStore:
        """
        Create an in-memory SQLite store for testing.

        Example:
            store = await SqliteOperationStore.in_memory()
            # Ready to use immediately
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteOperationStore(in-memory)"
        return f"SqliteOperationStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create tables and indexes
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()

        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()

    async def _create_schema(self) -> None:
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS operations (
                id TEXT PRIMARY KEY,
                flow_name TEXT NOT NULL,
                status TEXT CHECK( status IN (
                    'running','suspended','succeeded','failed'
                ) ) NOT NULL,
                revision INTEGER NOT NULL DEFAULT 0,
                data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_operations_status
            ON operations(status)
        """)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> None:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _encode(operation: Operation) -> str:
        try:
            return json.dumps(operation.to_dict())
        except (TypeError, ValueError) as e:
            raise StorageError(f"Operation {operation.id} is not JSON serializable: {e}") from e

    async def create(self, operation: Operation) -> None:
        self._check_connected()
        data = self._encode(operation)
        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO operations (id, flow_name, status, revision, data, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        operation.id,
                        operation.flow_name,
                        operation.status.value,
                        operation.revision,
                        data,
                        operation.updated_at.isoformat(),
                    ),
                )
            except aiosqlite.IntegrityError as e:
                raise StorageError(f"Operation already exists: {operation.id}") from e

    async def get(self, operation_id: str) -> Operation | None:
        self._check_connected()
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT data FROM operations WHERE id = ?", (operation_id,)
            )
            row = await cursor.fetchone()
            await cursor.close()

        if row is None:
            return None
        return Operation.from_dict(json.loads(row[0]))

    async def put(self, operation: Operation) -> None:
        self._check_connected()
        data = self._encode(operation)
        async with self._lock:
            await self._connection.execute(
                """
                INSERT OR REPLACE INTO operations (id, flow_name, status, revision, data, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    operation.id,
                    operation.flow_name,
                    operation.status.value,
                    operation.revision,
                    data,
                    operation.updated_at.isoformat(),
                ),
            )

    async def compare_and_set(
        self,
        operation: Operation,
        expected_status: OperationStatus,
        expected_revision: int,
    ) -> bool:
        self._check_connected()
        data = self._encode(operation)
        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE operations
                SET status = ?, revision = ?, data = ?, updated_at = ?
                WHERE id = ? AND status = ? AND revision = ?
                """,
                (
                    operation.status.value,
                    operation.revision,
                    data,
                    operation.updated_at.isoformat(),
                    operation.id,
                    expected_status.value,
                    expected_revision,
                ),
            )
            updated = cursor.rowcount
            await cursor.close()
        return updated == 1

    async def list_suspended(self) -> list[Operation]:
        self._check_connected()
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT data FROM operations WHERE status = ? ORDER BY updated_at",
                (OperationStatus.SUSPENDED.value,),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [Operation.from_dict(json.loads(row[0])) for row in rows]

    async def delete(self, operation_id: str) -> bool:
        self._check_connected()
        async with self._lock:
            cursor = await self._connection.execute(
                "DELETE FROM operations WHERE id = ?", (operation_id,)
            )
            deleted = cursor.rowcount
            await cursor.close()
        return deleted == 1

    async def reset(self) -> None:
        self._check_connected()
        async with self._lock:
            await self._connection.execute("DELETE FROM operations")
