"""Redis-based operation store.

Provides a Redis backend so engines and workers on separate machines can
share operations.

Data Structures:
- pyresume:op:{id} (HASH): status, revision, flow_name and the JSON record
- pyresume:suspended (SET): ids of suspended operations

Key Features:
- Atomic compare-and-set via a Lua script (status + revision check,
  record write and suspended-index maintenance in one step)
- Connection pooling: redis-py connection pool for concurrent access
"""

from __future__ import annotations

import json

try:
    import redis.asyncio as redis
except ImportError:
    raise ImportError(
        "redis-py is required for RedisOperationStore. Install with: pip install redis"
    )

from pyresume.core.status import OperationStatus
from pyresume.models import Operation
from pyresume.storage.base import OperationStore, StorageError

_SUSPENDED_KEY = "pyresume:suspended"

_CREATE_SCRIPT = """
local op_key = KEYS[1]
local suspended_key = KEYS[2]

if redis.call('EXISTS', op_key) == 1 then
    return 0
end

redis.call('HSET', op_key, 'status', ARGV[1], 'revision', ARGV[2], 'flow_name', ARGV[3], 'data', ARGV[4])
if ARGV[1] == 'suspended' then
    redis.call('SADD', suspended_key, ARGV[5])
end
return 1
"""

_COMPARE_AND_SET_SCRIPT = """
local op_key = KEYS[1]
local suspended_key = KEYS[2]

local status = redis.call('HGET', op_key, 'status')
local revision = redis.call('HGET', op_key, 'revision')

if status ~= ARGV[1] or revision ~= ARGV[2] then
    return 0
end

redis.call('HSET', op_key, 'status', ARGV[3], 'revision', ARGV[4], 'data', ARGV[5])
if ARGV[3] == 'suspended' then
    redis.call('SADD', suspended_key, ARGV[6])
else
    redis.call('SREM', suspended_key, ARGV[6])
end
return 1
"""


class RedisOperationStore(OperationStore):
    """Redis operation store using connection pooling.

    Usage:
        store = RedisOperationStore("redis://localhost:6379")
        await store.connect()
        engine = FlowEngine(store, flows=[my_flow])
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", max_connections: int = 16):
        """Initialize Redis store.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisOperationStore({self._redis_url})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        if self._redis is not None:
            return
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _op_key(operation_id: str) -> str:
        """Build Redis key for an operation hash."""
        return f"pyresume:op:{operation_id}"

    @staticmethod
    def _encode(operation: Operation) -> str:
        try:
            return json.dumps(operation.to_dict())
        except (TypeError, ValueError) as e:
            raise StorageError(f"Operation {operation.id} is not JSON serializable: {e}") from e

    async def create(self, operation: Operation) -> None:
        self._check_connected()
        created = await self._redis.eval(
            _CREATE_SCRIPT,
            2,
            self._op_key(operation.id),
            _SUSPENDED_KEY,
            operation.status.value,
            str(operation.revision),
            operation.flow_name,
            self._encode(operation),
            operation.id,
        )
        if int(created) != 1:
            raise StorageError(f"Operation already exists: {operation.id}")

    async def get(self, operation_id: str) -> Operation | None:
        self._check_connected()
        data = await self._redis.hget(self._op_key(operation_id), "data")
        if data is None:
            return None
        return Operation.from_dict(json.loads(data))

    async def put(self, operation: Operation) -> None:
        self._check_connected()
        op_key = self._op_key(operation.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                op_key,
                mapping={
                    "status": operation.status.value,
                    "revision": str(operation.revision),
                    "flow_name": operation.flow_name,
                    "data": self._encode(operation),
                },
            )
            if operation.status == OperationStatus.SUSPENDED:
                pipe.sadd(_SUSPENDED_KEY, operation.id)
            else:
                pipe.srem(_SUSPENDED_KEY, operation.id)
            await pipe.execute()

    async def compare_and_set(
        self,
        operation: Operation,
        expected_status: OperationStatus,
        expected_revision: int,
    ) -> bool:
        self._check_connected()
        updated = await self._redis.eval(
            _COMPARE_AND_SET_SCRIPT,
            2,
            self._op_key(operation.id),
            _SUSPENDED_KEY,
            expected_status.value,
            str(expected_revision),
            operation.status.value,
            str(operation.revision),
            self._encode(operation),
            operation.id,
        )
        return int(updated) == 1

    async def list_suspended(self) -> list[Operation]:
        self._check_connected()
        operations = []
        for operation_id in sorted(await self._redis.smembers(_SUSPENDED_KEY)):
            operation = await self.get(operation_id)
            if operation is not None and operation.status == OperationStatus.SUSPENDED:
                operations.append(operation)
        return operations

    async def delete(self, operation_id: str) -> bool:
        self._check_connected()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._op_key(operation_id))
            pipe.srem(_SUSPENDED_KEY, operation_id)
            deleted, _ = await pipe.execute()
        return int(deleted) == 1

    async def reset(self) -> None:
        """Delete all pyresume keys.

        Only deletes pyresume:* keys, doesn't affect other Redis data.
        """
        self._check_connected()

        keys = []
        async for key in self._redis.scan_iter(match="pyresume:*"):
            keys.append(key)

        if keys:
            await self._redis.delete(*keys)
