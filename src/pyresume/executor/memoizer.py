"""Step memoization and replay.

`run_step(name, fn)` is the building block of every flow: the first time
a (name, occurrence) key is reached, `fn()` runs and its outcome is
appended to the operation's cursor; on every later replay the recorded
outcome is returned (or re-raised) without calling `fn` again.

Step functions run in their own task and are awaited through
asyncio.shield: when the run suspends, in-flight steps are left to
finish, and their outcomes are dropped because the context is closed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pyresume.core.context import STEP_SCOPE, Context, get_current_context
from pyresume.core.errors import NonDeterminismError, StepFailure
from pyresume.models import StepOutcome, StepRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _replay(record: StepRecord) -> Any:
    if record.outcome.is_ok:
        return record.outcome.value
    raise StepFailure(record.step_name, record.occurrence_index, record.outcome.error)


def _forget(task: asyncio.Task, ctx: Context) -> None:
    ctx.detached_tasks.discard(task)
    # Outcomes of abandoned steps are dropped; retrieve the exception so
    # asyncio does not report it as never retrieved.
    if not task.cancelled():
        task.exception()


async def _in_step_scope(name: str, fn: Callable[[], Awaitable[T]]) -> T:
    STEP_SCOPE.set(name)
    return await fn()


def in_step() -> bool:
    """True while a step function is executing in the current task."""
    return STEP_SCOPE.get() is not None


def _ensure_json(name: str, value: Any) -> None:
    # Recorded outcomes are persisted as JSON by every store
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise TypeError(f"result of step '{name}' is not JSON serializable: {e}") from e


async def execute_step(
    ctx: Context,
    name: str,
    occurrence_index: int,
    fn: Callable[[], Awaitable[T]],
    fingerprint: int | None = None,
) -> T:
    """Run or replay the step keyed (name, occurrence_index) in `ctx`.

    Shared by run_step and the fan-out executor, which allocates its
    occurrence indices up front.

    Raises:
        StepFailure: If the step raised now or when it was recorded
        NonDeterminismError: If the recorded arguments differ
    """
    record = ctx.lookup(name, occurrence_index)
    if record is not None:
        if (
            fingerprint is not None
            and record.fingerprint is not None
            and record.fingerprint != fingerprint
        ):
            raise ctx.flag_divergence(
                NonDeterminismError(
                    f"step '{name}' ({occurrence_index}) replayed with different arguments "
                    f"than recorded in operation {ctx.operation.id}"
                )
            )
        logger.debug(f"Replaying step '{name}' ({occurrence_index}) for {ctx.operation.id}")
        return _replay(record)

    if ctx.closed:
        # The attempt already suspended; start no new work
        await ctx.park()

    task = asyncio.ensure_future(_in_step_scope(name, fn))
    ctx.detached_tasks.add(task)
    task.add_done_callback(lambda t: _forget(t, ctx))

    try:
        value = await asyncio.shield(task)
        _ensure_json(name, value)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = _error_message(e)
        if not ctx.record(StepRecord(name, occurrence_index, StepOutcome.err(message), fingerprint)):
            await ctx.park()
        raise StepFailure(name, occurrence_index, message) from e

    if not ctx.record(StepRecord(name, occurrence_index, StepOutcome.ok(value), fingerprint)):
        await ctx.park()
    return value


async def run_step(
    name: str,
    fn: Callable[[], Awaitable[T]],
    *,
    fingerprint: int | None = None,
) -> T:
    """Run `fn` as a memoized step named `name`.

    Occurrences of the same name within a run are numbered in call order,
    so calling `run_step("a", ...)` twice records ("a", 0) and ("a", 1).
    Outside a running flow, or inside another step's function, `fn` is
    simply awaited.

    Args:
        name: Step name
        fn: Zero-argument callable returning an awaitable
        fingerprint: Optional hash of the step's arguments, compared on replay

    Returns:
        The step's value, fresh or recorded

    Raises:
        StepFailure: If the step raised (now or in the recorded run), or
            returned a value that cannot be stored as JSON

    Example:
        ```python
        subject = await run_step("make-subject", lambda: llm.generate(prompt))
        ```
    """
    ctx = get_current_context()
    if ctx is None or in_step():
        # Nested in a step: the enclosing step records the whole result
        return await fn()
    occurrence_index = ctx.next_occurrence(name)
    return await execute_step(ctx, name, occurrence_index, fn, fingerprint)
