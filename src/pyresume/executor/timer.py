"""Durable timers for flows.

`sleep(name, duration_ms)` pauses a flow for a wall-clock duration that
survives process restarts. The first time it is reached, the wake time
is computed and the run suspends. Every later resume checks the clock:
before the wake time the run suspends again with the same wake time,
at or after it the sleep is recorded as a completed step and the flow
continues.

Resumes are driven by the Worker poller, or explicitly through
`FlowEngine.resume(id, name)`.
"""

import logging
from datetime import timedelta

from pyresume.core.context import require_context
from pyresume.core.status import SuspensionKind
from pyresume.models import SleepSuspension, StepOutcome, StepRecord

logger = logging.getLogger(__name__)


async def sleep(name: str, duration_ms: int) -> None:
    """Suspend the current flow until `duration_ms` milliseconds have passed.

    Args:
        name: Step name of the timer (occurrences are counted per name)
        duration_ms: Delay in milliseconds, measured from the first reach

    Raises:
        FlowContextError: If called outside a running flow
        ValueError: If duration_ms is negative

    Example:
        ```python
        @flow(name="reminder")
        async def reminder(user_id):
            await sleep("wait-a-day", 24 * 60 * 60 * 1000)
            return await run_step("send", lambda: send_reminder(user_id))
        ```
    """
    if duration_ms < 0:
        raise ValueError(f"sleep duration must be non-negative, got {duration_ms}")

    ctx = require_context("sleep")
    occurrence_index = ctx.next_occurrence(name)

    if ctx.lookup(name, occurrence_index) is not None:
        return None

    now = ctx.now()
    target = ctx.claim_target(name, occurrence_index, SuspensionKind.SLEEP)

    if target is not None:
        if target.is_due(now):
            logger.debug(f"Timer '{name}' fired for operation {ctx.operation.id}")
            if not ctx.record(StepRecord(name, occurrence_index, StepOutcome.ok(None))):
                await ctx.park()
            return None
        # Resumed early: keep the original wake time
        wake_at = target.wake_at
    else:
        wake_at = now + timedelta(milliseconds=duration_ms)

    await ctx.suspend(SleepSuspension(name, occurrence_index, wake_at))
