"""Task-local execution context for flow runs.

Provides Context for tracking one run attempt's state without threading
it through every function call. Uses contextvars for task-local storage,
so several flows (and fan-out items within one flow) can execute
concurrently without interference.

Suspension is reported to the engine through the context rather than by
raising: a primitive calls `Context.suspend()`, which stores the pending
suspension and wakes the engine, then parks the calling task. The engine
sees the stored suspension as a value and ends the attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from pyresume.core.errors import FlowContextError, NonDeterminismError
from pyresume.core.status import SuspensionKind
from pyresume.models import Operation, PendingSuspension, StepRecord

if TYPE_CHECKING:
    from pyresume.executor.engine import FlowEngine

logger = logging.getLogger(__name__)

# Sentinel for "no resume input supplied". None is a legitimate input value.
_NO_INPUT = object()


# =============================================================================
# Task-Local Context Variable
# =============================================================================

EXECUTION_CONTEXT: ContextVar[Optional["Context"]] = ContextVar("execution_context", default=None)
"""Task-local Context for the flow run attempt executing in this task.

Usage:
    ```python
    ctx = Context(operation, engine)
    token = EXECUTION_CONTEXT.set(ctx)
    try:
        task = asyncio.create_task(body(operation.input))
    finally:
        EXECUTION_CONTEXT.reset(token)
    ```
"""

STEP_SCOPE: ContextVar[str | None] = ContextVar("step_scope", default=None)
"""Name of the step whose function is executing in this task, if any.

Set inside the task that runs a step function. Suspension primitives
refuse to run there: a step is a single unit of work and cannot pause.
"""


def get_current_context() -> Optional["Context"]:
    """Return the Context of the running flow, or None outside a flow."""
    return EXECUTION_CONTEXT.get()


def require_context(primitive: str) -> "Context":
    """Return the current Context or fail loudly.

    Raises:
        FlowContextError: If called outside a running flow
    """
    ctx = EXECUTION_CONTEXT.get()
    if ctx is None:
        raise FlowContextError(f"{primitive}() can only be called inside a running flow")
    step_name = STEP_SCOPE.get()
    if step_name is not None:
        raise FlowContextError(f"{primitive}() cannot be called inside step '{step_name}'")
    return ctx


# =============================================================================
# Context - Run Attempt State
# =============================================================================


class Context:
    """Execution state for a single run attempt of one operation.

    Holds the checked-out Operation, the occurrence counters that turn a
    step name into a (name, occurrence_index) key, and the resume target:
    the pending suspension this attempt was started to resolve.

    Once the attempt suspends the context is closed. A closed context
    refuses further records, so step functions that finish after the
    attempt ended cannot grow the cursor.
    """

    def __init__(
        self,
        operation: Operation,
        engine: "FlowEngine",
        *,
        resume_target: PendingSuspension | None = None,
        resume_input: Any = _NO_INPUT,
        on_chunk: Callable[[Any], Awaitable[None] | None] | None = None,
    ):
        self.operation = operation
        self.engine = engine
        self.on_chunk = on_chunk

        self._records: dict[tuple[str, int], StepRecord] = {r.key: r for r in operation.cursor}
        self._occurrences: dict[str, int] = {}

        self.resume_target = resume_target
        self._resume_input = resume_input
        self.target_consumed = resume_target is None

        self.suspension: PendingSuspension | None = None
        self._suspended = asyncio.Event()
        self._closed = False

        self.divergence: NonDeterminismError | None = None

        # Strong references to shielded step tasks, see run_step
        self.detached_tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"Context(operation={self.operation.id}, flow={self.operation.flow_name})"

    # -------------------------------------------------------------------------
    # Keys and records
    # -------------------------------------------------------------------------

    def next_occurrence(self, name: str) -> int:
        """Allocate the occurrence index for the next call of `name`.

        Synchronous so that concurrent callers are numbered in call order.
        """
        index = self._occurrences.get(name, 0)
        self._occurrences[name] = index + 1
        return index

    def lookup(self, name: str, occurrence_index: int) -> StepRecord | None:
        return self._records.get((name, occurrence_index))

    def record(self, record: StepRecord) -> bool:
        """Append a step record to the cursor.

        Returns False (and records nothing) once the attempt has ended or
        if the key is already recorded.
        """
        if self._closed:
            logger.warning(
                f"Discarding late outcome of step '{record.step_name}' "
                f"({record.occurrence_index}) for operation {self.operation.id}"
            )
            return False
        if record.key in self._records:
            return False
        self._records[record.key] = record
        self.operation.cursor.append(record)
        return True

    @property
    def closed(self) -> bool:
        return self._closed

    def now(self) -> datetime:
        return self.engine.clock()

    # -------------------------------------------------------------------------
    # Resume target
    # -------------------------------------------------------------------------

    def claim_target(
        self, name: str, occurrence_index: int, kind: SuspensionKind
    ) -> PendingSuspension | None:
        """Return the resume target if this call is the point it suspended at.

        Marks the target consumed. Any other call returns None.
        """
        target = self.resume_target
        if target is None or self.target_consumed:
            return None
        if (
            target.kind is kind
            and target.name == name
            and target.occurrence_index == occurrence_index
        ):
            self.target_consumed = True
            return target
        return None

    @property
    def resume_input(self) -> Any:
        return None if self._resume_input is _NO_INPUT else self._resume_input

    @property
    def has_resume_input(self) -> bool:
        return self._resume_input is not _NO_INPUT

    def flag_divergence(self, error: NonDeterminismError) -> NonDeterminismError:
        """Remember a replay divergence so the engine fails the run."""
        if self.divergence is None:
            self.divergence = error
        return error

    # -------------------------------------------------------------------------
    # Suspension
    # -------------------------------------------------------------------------

    async def suspend(self, pending: PendingSuspension) -> None:
        """Report a suspension to the engine and park the calling task.

        The first suspension of an attempt wins; later ones (from
        concurrent fan-out items) just park. Never returns: the engine
        cancels the parked body once it has persisted the suspension.
        """
        if not self._closed:
            self.suspension = pending
            self._closed = True
            self._suspended.set()
            logger.debug(
                f"Operation {self.operation.id} suspending at {pending.kind.value} "
                f"'{pending.name}' ({pending.occurrence_index})"
            )
        await self.park()

    async def park(self) -> None:
        """Block the calling task until the engine cancels it."""
        await asyncio.get_running_loop().create_future()

    async def wait_suspended(self) -> PendingSuspension | None:
        await self._suspended.wait()
        return self.suspension

    def close(self) -> None:
        self._closed = True
