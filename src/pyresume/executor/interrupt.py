"""External-input interrupts.

`interrupt(name, input_schema, on_resume)` pauses a flow until a caller
supplies a value through `FlowEngine.resume(id, name, value)`. The
engine validates the value against `input_schema` before touching the
stored operation, so a bad value fails the resume, never the flow.

The value (after `on_resume`) becomes the recorded outcome of the
interrupt, so later replays return it without waiting again. Calling
`interrupt` with the same name in a loop suspends once per iteration;
each call is a separate occurrence.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pyresume.core.context import require_context
from pyresume.core.errors import StepFailure
from pyresume.core.status import SuspensionKind
from pyresume.executor.memoizer import _ensure_json, _error_message, _replay
from pyresume.models import InterruptSuspension, StepOutcome, StepRecord

logger = logging.getLogger(__name__)


async def interrupt(
    name: str,
    input_schema: dict[str, Any] | None = None,
    on_resume: Callable[[Any], Any | Awaitable[Any]] | None = None,
) -> Any:
    """Suspend the current flow until input named `name` is supplied.

    Args:
        name: Interrupt name, used by callers of resume()
        input_schema: JSON Schema the resume input must satisfy (None accepts anything)
        on_resume: Sync or async callable applied to the input; its return
            value is recorded and returned. Defaults to returning the input.

    Returns:
        The recorded outcome for this interrupt occurrence

    Raises:
        StepFailure: If on_resume raised (now or in the recorded run)
        FlowContextError: If called outside a running flow

    Example:
        ```python
        approved = await interrupt(
            "approve",
            {"type": "object", "properties": {"ok": {"type": "boolean"}}, "required": ["ok"]},
            lambda answer: answer["ok"],
        )
        ```
    """
    ctx = require_context("interrupt")
    occurrence_index = ctx.next_occurrence(name)

    record = ctx.lookup(name, occurrence_index)
    if record is not None:
        return _replay(record)

    target = ctx.claim_target(name, occurrence_index, SuspensionKind.INTERRUPT)
    if target is None:
        await ctx.suspend(InterruptSuspension(name, occurrence_index, input_schema))

    value = ctx.resume_input
    logger.debug(f"Interrupt '{name}' received input for operation {ctx.operation.id}")

    try:
        outcome = value if on_resume is None else on_resume(value)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        _ensure_json(name, outcome)
    except Exception as e:
        message = _error_message(e)
        if not ctx.record(StepRecord(name, occurrence_index, StepOutcome.err(message))):
            await ctx.park()
        raise StepFailure(name, occurrence_index, message) from e

    if not ctx.record(StepRecord(name, occurrence_index, StepOutcome.ok(outcome))):
        await ctx.park()
    return outcome
