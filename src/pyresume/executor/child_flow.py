"""Sub-flow dispatch and waiting.

- schedule_flow(flow, input) starts a sub-flow in the background and
  returns its operation id. The dispatch is a memoized step, so a replay
  does not start the sub-flow again.
- wait_for(name, ids) suspends the current flow until every watched
  operation is terminal, then records and returns their final states.
  Waiting is poll based: the Worker (or an explicit resume) re-checks.
- run_flow(flow, input) runs a sub-flow inline and returns its result.

Fan-out dispatch combines schedule_flow with run_map:

    ```python
    ids = await run_map("dispatch", items, lambda item: schedule_flow(child, item))
    states = await wait_for("children", ids)
    ```
"""

import logging
from typing import Any

from pyresume.core.context import get_current_context, require_context
from pyresume.core.errors import FlowContextError, FlowFailure, OperationNotFound
from pyresume.core.status import OperationStatus, SuspensionKind
from pyresume.executor.memoizer import _replay, run_step
from pyresume.executor.registry import FlowDefinition
from pyresume.models import Operation, StepOutcome, StepRecord, SubflowWaitSuspension

logger = logging.getLogger(__name__)


def _engine_for(primitive: str):
    ctx = get_current_context()
    if ctx is None:
        raise FlowContextError(f"{primitive}() can only be called inside a running flow")
    return ctx.engine


def _summary(operation: Operation) -> dict[str, Any]:
    return {
        "id": operation.id,
        "status": operation.status.value,
        "result": operation.result,
        "error": operation.error,
    }


async def schedule_flow(
    flow: FlowDefinition | str,
    input: Any = None,
    *,
    name: str | None = None,
) -> str:
    """Start `flow` in the background as a memoized step.

    Args:
        flow: Definition or registered flow name
        input: Sub-flow input
        name: Step name (defaults to "schedule:<flow name>")

    Returns:
        Operation id of the sub-flow (the recorded one on replay)
    """
    engine = _engine_for("schedule_flow")
    definition = engine.resolve(flow)
    step_name = name or f"schedule:{definition.name}"
    return await run_step(step_name, lambda: engine.schedule(definition, input))


async def wait_for(name: str, flow_ids: list[str]) -> list[dict[str, Any]]:
    """Wait until every operation in `flow_ids` is terminal.

    Returns:
        One {"id", "status", "result", "error"} dict per id, in the order
        of `flow_ids`

    Raises:
        OperationNotFound: If a watched id does not exist
        FlowContextError: If called outside a running flow
    """
    ctx = require_context("wait_for")
    occurrence_index = ctx.next_occurrence(name)

    record = ctx.lookup(name, occurrence_index)
    if record is not None:
        return _replay(record)

    ctx.claim_target(name, occurrence_index, SuspensionKind.SUBFLOW_WAIT)

    watched: list[Operation] = []
    for flow_id in flow_ids:
        operation = await ctx.engine.store.get(flow_id)
        if operation is None:
            raise OperationNotFound(flow_id)
        watched.append(operation)

    remaining = sum(1 for operation in watched if not operation.is_terminal)
    if remaining:
        logger.debug(
            f"Operation {ctx.operation.id} waiting on {remaining} of {len(watched)} sub-flow(s)"
        )
        await ctx.suspend(SubflowWaitSuspension(name, occurrence_index, tuple(flow_ids)))

    states = [_summary(operation) for operation in watched]
    if not ctx.record(StepRecord(name, occurrence_index, StepOutcome.ok(states))):
        await ctx.park()
    return states


async def run_flow(flow: FlowDefinition | str, input: Any = None) -> Any:
    """Run `flow` to completion inline and return its result.

    The sub-flow gets its own operation. The call is a memoized step
    named "run:<flow name>": a sub-flow that failed or suspended is
    recorded as a step failure (StepFailure, caused by FlowFailure).
    """
    engine = _engine_for("run_flow")
    definition = engine.resolve(flow)

    async def invoke() -> Any:
        state = await engine.start(definition, input)
        if state.status == OperationStatus.SUCCEEDED:
            return state.result
        if state.status == OperationStatus.FAILED:
            raise FlowFailure(f"sub-flow '{definition.name}' failed: {state.error}", state.id)
        raise FlowFailure(
            f"sub-flow '{definition.name}' suspended on '{state.pending_suspension.name}'",
            state.id,
        )

    return await run_step(f"run:{definition.name}", invoke)
