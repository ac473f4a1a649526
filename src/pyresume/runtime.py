"""Per-process runtime: one store, one engine, one worker.

Runtime is the object an application constructs once and passes to
whatever needs to start or resume flows. It owns the lifecycle of its
parts: start() connects the store and starts the poller, stop() stops
the poller, waits for background runs and closes the store.

Usage:
    ```python
    async with Runtime(SqliteOperationStore("flows.db"), flows=[review]) as runtime:
        state = await runtime.engine.start(review, {"doc": "..."})
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pyresume.core.validation import Validator
from pyresume.executor.engine import Clock, FlowEngine
from pyresume.executor.registry import FlowDefinition
from pyresume.executor.worker import Worker, WorkerHandle
from pyresume.storage.base import OperationStore

logger = logging.getLogger(__name__)


class Runtime:
    """Explicit process context for pyresume.

    Args:
        store: Operation store (connected by start())
        flows: Flow definitions to register
        validator: Schema validator override
        clock: Clock override, shared by engine and worker
        poll_interval: Worker poll interval in seconds (None reads
            PYRESUME_POLL_INTERVAL, falling back to 1 second)
        worker_id: Worker identifier for logs
        run_worker: Set False to start without the poller
    """

    def __init__(
        self,
        store: OperationStore,
        flows: Iterable[FlowDefinition] = (),
        *,
        validator: Validator | None = None,
        clock: Clock | None = None,
        poll_interval: float | None = None,
        worker_id: str = "worker",
        run_worker: bool = True,
    ):
        self.store = store
        self.engine = FlowEngine(store, flows, validator=validator, clock=clock)
        self.worker = Worker(self.engine, worker_id).from_env()
        if poll_interval is not None:
            self.worker.with_poll_interval(poll_interval)
        self._run_worker = run_worker
        self._handle: WorkerHandle | None = None
        self._started = False

    def __repr__(self) -> str:
        state = "started" if self._started else "stopped"
        return f"Runtime({state}, store={self.store!r})"

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> Runtime:
        """Connect the store and start the poller. Idempotent."""
        if self._started:
            return self
        await self.store.connect()
        if self._run_worker:
            self._handle = await self.worker.start()
        self._started = True
        logger.info(f"Runtime started with {len(self.engine.registry)} flow(s)")
        return self

    async def stop(self) -> None:
        """Stop the poller, wait for background runs, close the store."""
        if not self._started:
            return
        try:
            if self._handle is not None:
                await self._handle.shutdown()
                self._handle = None
            await self.engine.drain()
        finally:
            await self.store.close()
            self._started = False
            logger.info("Runtime stopped")

    async def __aenter__(self) -> Runtime:
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
