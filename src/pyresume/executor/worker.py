"""Poller that resumes operations whose wait condition is met.

Sleeps and sub-flow waits are resumed by polling, not by push: the worker
periodically lists suspended operations and resumes every one whose timer
is due or whose watched operations have all reached a terminal state.
Interrupts are never touched; they wait for an explicit resume() call.

Several workers (in one or many processes) may poll the same store. The
engine's single-winner resume makes that safe: a worker that loses the
race gets ConcurrentResumeConflict and moves on.

Features:
- Builder-style configuration (with_poll_interval, from_env)
- Graceful shutdown through WorkerHandle
"""

from __future__ import annotations

import asyncio
import logging
import os

from pyresume.core.errors import ConcurrentResumeConflict, ResumeMismatch
from pyresume.core.status import SuspensionKind
from pyresume.executor.engine import FlowEngine
from pyresume.models import Operation, SleepSuspension, SubflowWaitSuspension

logger = logging.getLogger(__name__)

POLL_INTERVAL_ENV = "PYRESUME_POLL_INTERVAL"


class Worker:
    """Resumes due sleeps and completed sub-flow waits.

    Default configuration works out of the box, but customizable.

    Usage:
        worker = Worker(engine, "worker-1").with_poll_interval(0.5)

        handle = await worker.start()
        # ... let it run ...
        await handle.shutdown()
    """

    def __init__(self, engine: FlowEngine, worker_id: str = "worker"):
        """Initialize worker for an engine.

        Args:
            engine: Engine whose store is polled and whose flows are resumed
            worker_id: Identifier used in log messages
        """
        self._engine = engine
        self._worker_id = worker_id
        self._poll_interval = 1.0

        self._shutdown_event = asyncio.Event()
        self._running = False

    def __repr__(self) -> str:
        return f"Worker({self._worker_id}, poll_interval={self._poll_interval})"

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def with_poll_interval(self, interval: float) -> Worker:
        """Configure polling interval (builder pattern).

        Args:
            interval: Seconds between store polls

        Returns:
            self for method chaining
        """
        if interval <= 0:
            raise ValueError(f"poll interval must be positive, got {interval}")
        self._poll_interval = interval
        return self

    def from_env(self) -> Worker:
        """Read the poll interval from PYRESUME_POLL_INTERVAL (builder pattern).

        Keeps the current interval when the variable is unset.

        Example:
            # $ export PYRESUME_POLL_INTERVAL=0.25
            worker = Worker(engine, "worker-1").from_env()
        """
        value = os.getenv(POLL_INTERVAL_ENV)
        if value:
            try:
                interval = float(value)
            except ValueError:
                raise ValueError(f"{POLL_INTERVAL_ENV} must be a number, got {value!r}") from None
            return self.with_poll_interval(interval)
        return self

    # =========================================================================
    # Polling
    # =========================================================================

    async def _is_ready(self, operation: Operation) -> bool:
        pending = operation.pending_suspension
        if isinstance(pending, SleepSuspension):
            return pending.is_due(self._engine.clock())
        if isinstance(pending, SubflowWaitSuspension):
            for watched_id in pending.watched_ids:
                watched = await self._engine.store.get(watched_id)
                # A missing child is reported by wait_for itself on resume
                if watched is not None and not watched.is_terminal:
                    return False
            return True
        return False

    async def _resume(self, operation: Operation) -> bool:
        pending = operation.pending_suspension
        try:
            await self._engine.resume(operation.id, pending.name, kind=pending.kind)
        except ConcurrentResumeConflict:
            logger.warning(
                f"Worker {self._worker_id}: operation {operation.id} was resumed elsewhere"
            )
            return False
        except ResumeMismatch as e:
            # State moved on between listing and resuming
            logger.debug(f"Worker {self._worker_id}: skipping operation {operation.id}: {e}")
            return False
        return True

    async def poll_once(self) -> int:
        """Resume every ready operation once.

        Returns:
            Number of operations this worker resumed
        """
        suspended = await self._engine.store.list_suspended()
        ready = []
        for operation in suspended:
            if operation.pending_suspension.kind is SuspensionKind.INTERRUPT:
                continue
            if await self._is_ready(operation):
                ready.append(operation)

        if not ready:
            return 0

        logger.debug(f"Worker {self._worker_id}: resuming {len(ready)} operation(s)")
        results = await asyncio.gather(
            *(self._resume(operation) for operation in ready), return_exceptions=True
        )

        resumed = 0
        for operation, result in zip(ready, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    f"Worker {self._worker_id}: resume of operation {operation.id} failed: {result}"
                )
            elif result:
                resumed += 1
        return resumed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> WorkerHandle:
        """Start the polling loop.

        Returns WorkerHandle immediately, letting caller decide
        whether to await or run concurrently.
        """
        self._running = True
        self._shutdown_event.clear()
        task = asyncio.create_task(self._run())
        return WorkerHandle(self, task)

    async def _run(self) -> None:
        logger.info(f"Worker {self._worker_id} started")
        try:
            while self._running and not self._shutdown_event.is_set():
                try:
                    await self.poll_once()
                except Exception as e:
                    logger.error(f"Worker {self._worker_id} error: {e}")

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._poll_interval)
                except TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info(f"Worker {self._worker_id} stopped")

    async def shutdown(self) -> None:
        """Gracefully stop polling. Resumes already in progress finish first."""
        logger.info(f"Worker {self._worker_id} shutting down...")
        self._running = False
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running


class WorkerHandle:
    """Handle for controlling a running worker.

    Usage:
        handle = await worker.start()
        await handle.shutdown()
    """

    def __init__(self, worker: Worker, task: asyncio.Task):
        self._worker = worker
        self._task = task

    def worker_id(self) -> str:
        """Return the worker ID."""
        return self._worker.worker_id

    def is_running(self) -> bool:
        """Return True if the worker task is still running."""
        return not self._task.done()

    async def shutdown(self) -> None:
        """Shutdown worker and wait for the loop to exit."""
        await self._worker.shutdown()
        await self._task

        logger.info("Worker handle closed")

    def abort(self) -> None:
        """Abort the worker immediately without waiting for completion.

        An in-progress poll is cancelled mid-way; a resume that was
        running stays in the running state in the store.
        """
        self._task.cancel()
