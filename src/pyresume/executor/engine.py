"""Flow engine: drives one operation from start or resume to its next stop.

State machine per operation:

    Created -> Running -> {Suspended -> Running}* -> {Succeeded | Failed}

Every attempt (a start or a resume) runs the flow body from the top in a
fresh task carrying a Context. Recorded steps replay from the cursor;
the first unresolved point either consumes the resume input or
suspends. The attempt's result comes back as a FlowOutcome value and the
operation is written back to the store in one piece.

Resumes are single-winner: the suspended -> running transition is a
store compare-and-set on (status, revision). The loser gets
ConcurrentResumeConflict and runs nothing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from uuid_extensions import uuid7

from pyresume.core.context import _NO_INPUT, EXECUTION_CONTEXT, STEP_SCOPE, Context
from pyresume.core.errors import (
    ConcurrentResumeConflict,
    FlowFailure,
    InvalidInput,
    NonDeterminismError,
    OperationNotFound,
    ResumeMismatch,
)
from pyresume.core.status import OperationStatus, SuspensionKind
from pyresume.core.validation import JsonSchemaValidator, Validator
from pyresume.executor.outcome import Completed, Failed, FlowOutcome, Suspended
from pyresume.executor.registry import FlowDefinition, Registry
from pyresume.models import Operation, PendingSuspension
from pyresume.storage.base import OperationStore, StorageError
from pyresume.streaming.bridge import StreamingResponse, stream_call

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default engine clock."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class FlowState:
    """Caller-facing result of start() and resume().

    `result` is set when succeeded, `error` when failed and
    `pending_suspension` when suspended.
    """

    id: str
    flow_name: str
    status: OperationStatus
    result: Any = None
    error: str | None = None
    pending_suspension: PendingSuspension | None = None

    @classmethod
    def from_operation(cls, operation: Operation) -> FlowState:
        return cls(
            id=operation.id,
            flow_name=operation.flow_name,
            status=operation.status,
            result=operation.result,
            error=operation.error,
            pending_suspension=operation.pending_suspension,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "flowName": self.flow_name,
            "status": self.status.value,
        }
        if self.status == OperationStatus.SUCCEEDED:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        if self.pending_suspension is not None:
            data["pendingSuspension"] = self.pending_suspension.to_dict()
        return data


class FlowEngine:
    """Starts, resumes and inspects flow operations.

    Args:
        store: Where operations live between attempts
        flows: Flow definitions resumable by this engine
        validator: Schema validator (JSON Schema by default)
        clock: Callable returning the current UTC time

    Usage:
        ```python
        engine = FlowEngine(InMemoryOperationStore(), flows=[review])
        state = await engine.start(review, {"doc": "..."})
        if state.status is OperationStatus.SUSPENDED:
            state = await engine.resume(state.id, "approve", {"ok": True})
        ```
    """

    def __init__(
        self,
        store: OperationStore,
        flows: Iterable[FlowDefinition] = (),
        validator: Validator | None = None,
        clock: Clock | None = None,
    ):
        self._store = store
        self._registry = Registry(flows)
        self._validator = validator or JsonSchemaValidator()
        self.clock: Clock = clock or utc_now

        # Track background runs to prevent garbage collection
        self._background_tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"FlowEngine(store={self._store!r}, flows={len(self._registry)})"

    @property
    def store(self) -> OperationStore:
        return self._store

    @property
    def registry(self) -> Registry:
        return self._registry

    def register(self, definition: FlowDefinition) -> FlowDefinition:
        """Register a flow so operations of it can be resumed."""
        self._registry.register(definition)
        return definition

    def resolve(self, flow: FlowDefinition | str) -> FlowDefinition:
        """Return the definition for a name, registering definitions on first use.

        Raises:
            UnknownFlowError: If a name is not registered
        """
        if isinstance(flow, FlowDefinition):
            if flow.name not in self._registry:
                self._registry.register(flow)
            return self._registry.get(flow.name)
        return self._registry.get(flow)

    # =========================================================================
    # Control surface
    # =========================================================================

    async def start(
        self,
        flow: FlowDefinition | str,
        input: Any = None,
        *,
        on_chunk: Callable[[Any], Any] | None = None,
    ) -> FlowState:
        """Create an operation for `flow` and run it until it stops.

        Args:
            flow: Definition or registered flow name
            input: Flow input, validated against the input schema
            on_chunk: Receives chunks emitted with send_chunk()

        Returns:
            FlowState: succeeded, failed or suspended

        Raises:
            InvalidInput: If input fails the flow's input schema
            UnknownFlowError: If a flow name is not registered
        """
        definition = self.resolve(flow)
        operation = await self._create(definition, input)
        return await self._drive(operation, definition, on_chunk=on_chunk)

    async def schedule(self, flow: FlowDefinition | str, input: Any = None) -> str:
        """Create an operation and run it in the background.

        Returns the operation id as soon as the record exists. Use
        get_status() or wait_for() to observe it, and drain() to wait for
        every background run of this engine.
        """
        definition = self.resolve(flow)
        operation = await self._create(definition, input)

        task = asyncio.create_task(self._drive_in_background(operation, definition))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return operation.id

    async def resume(
        self,
        operation_id: str,
        suspension_name: str,
        input: Any = None,
        *,
        kind: SuspensionKind | str | None = None,
    ) -> FlowState:
        """Resume a suspended operation.

        Checks happen before the record is touched, so a rejected resume
        leaves the operation exactly as it was.

        Args:
            operation_id: Operation to resume
            suspension_name: Must equal the pending suspension's name
            input: Interrupt input (validated against its input schema)
            kind: Optional expected suspension kind

        Raises:
            OperationNotFound: If the id is unknown
            ResumeMismatch: Not suspended, wrong name/kind, or invalid input
            ConcurrentResumeConflict: Another resume won the race
        """
        operation = await self._store.get(operation_id)
        if operation is None:
            raise OperationNotFound(operation_id)

        if operation.status == OperationStatus.RUNNING:
            raise ConcurrentResumeConflict(f"operation {operation_id} is already running")
        if operation.status != OperationStatus.SUSPENDED:
            raise ResumeMismatch(
                f"operation {operation_id} is {operation.status.value}, not suspended"
            )

        pending = operation.pending_suspension
        if pending.name != suspension_name:
            raise ResumeMismatch(
                f"operation {operation_id} is waiting on '{pending.name}', "
                f"not '{suspension_name}'"
            )
        if kind is not None and SuspensionKind(kind) is not pending.kind:
            raise ResumeMismatch(
                f"operation {operation_id} is waiting on a {pending.kind.value}, "
                f"not a {SuspensionKind(kind).value}"
            )
        if pending.kind is SuspensionKind.INTERRUPT:
            errors = self._validator.validate(input, pending.input_schema)
            if errors:
                raise ResumeMismatch(
                    f"input for '{suspension_name}' does not match its schema: "
                    + "; ".join(errors)
                )

        definition = self._registry.get(operation.flow_name)

        expected_revision = operation.revision
        operation.pending_suspension = None
        operation.status = OperationStatus.RUNNING
        operation.revision += 1
        operation.updated_at = self.clock()

        if not await self._store.compare_and_set(
            operation, OperationStatus.SUSPENDED, expected_revision
        ):
            raise ConcurrentResumeConflict(f"operation {operation_id} was already resumed")

        logger.info(
            f"Resuming operation {operation_id} ({operation.flow_name}) "
            f"at {pending.kind.value} '{pending.name}'"
        )
        return await self._drive(
            operation,
            definition,
            resume_target=pending,
            resume_input=input if pending.kind is SuspensionKind.INTERRUPT else _NO_INPUT,
        )

    async def get_status(self, operation_id: str) -> Operation:
        """Return a copy of the stored operation.

        Raises:
            OperationNotFound: If the id is unknown
        """
        operation = await self._store.get(operation_id)
        if operation is None:
            raise OperationNotFound(operation_id)
        return operation

    async def stream(self, flow: FlowDefinition | str, input: Any = None) -> StreamingResponse:
        """Start `flow` and stream the chunks it emits with send_chunk().

        The final value of the stream is the run's FlowState. A failed run
        ends the stream with its error.

        Raises:
            InvalidInput: If input fails the flow's input schema
            StreamFailure: If the run failed before emitting any chunk
        """
        definition = self.resolve(flow)
        operation = await self._create(definition, input)

        async def produce(on_chunk: Callable[[Any], None]) -> FlowState:
            state = await self._drive(operation, definition, on_chunk=on_chunk)
            if state.status == OperationStatus.FAILED:
                raise FlowFailure(state.error or "flow failed", state.id)
            return state

        return await stream_call(produce)

    async def drain(self) -> None:
        """Wait until every background run started by schedule() has stopped."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # =========================================================================
    # Attempt execution
    # =========================================================================

    async def _create(self, definition: FlowDefinition, input: Any) -> Operation:
        errors = self._validator.validate(input, definition.input_schema)
        if errors:
            raise InvalidInput(
                f"invalid input for flow '{definition.name}': " + "; ".join(errors), errors
            )

        now = self.clock()
        operation = Operation(
            id=str(uuid7()),
            flow_name=definition.name,
            status=OperationStatus.RUNNING,
            input=input,
            created_at=now,
            updated_at=now,
        )
        await self._store.create(operation)
        logger.info(f"Started flow '{definition.name}': operation {operation.id}")
        return operation

    async def _drive_in_background(self, operation: Operation, definition: FlowDefinition) -> None:
        try:
            await self._drive(operation, definition)
        except Exception as e:
            # Nobody awaits this task; the operation stays as last written
            logger.error(f"Background run of operation {operation.id} failed: {e}")

    async def _drive(
        self,
        operation: Operation,
        definition: FlowDefinition,
        *,
        resume_target: PendingSuspension | None = None,
        resume_input: Any = _NO_INPUT,
        on_chunk: Callable[[Any], Any] | None = None,
    ) -> FlowState:
        ctx = Context(
            operation,
            self,
            resume_target=resume_target,
            resume_input=resume_input,
            on_chunk=on_chunk,
        )
        outcome = await self._attempt(ctx, definition)
        outcome = self._check_history(ctx, outcome)

        if isinstance(outcome, Completed):
            try:
                json.dumps(outcome.value)
            except (TypeError, ValueError) as e:
                outcome = Failed(
                    FlowFailure(
                        f"result of flow '{definition.name}' is not JSON serializable: {e}",
                        operation.id,
                    )
                )

        if isinstance(outcome, Completed):
            errors = self._validator.validate(outcome.value, definition.output_schema)
            if errors:
                outcome = Failed(
                    FlowFailure(
                        f"output of flow '{definition.name}' does not match its schema: "
                        + "; ".join(errors),
                        operation.id,
                    )
                )

        await self._write_back(operation, outcome)
        return FlowState.from_operation(operation)

    async def _attempt(self, ctx: Context, definition: FlowDefinition) -> FlowOutcome:
        """Run the body once and report how it stopped.

        The body runs in its own task so that a suspension can end the
        attempt while the body is parked. A suspension wins over
        anything the body does afterwards.
        """
        token = EXECUTION_CONTEXT.set(ctx)
        try:
            body = asyncio.create_task(self._run_body(definition, ctx.operation.input))
        finally:
            EXECUTION_CONTEXT.reset(token)
        suspended = asyncio.create_task(ctx.wait_suspended())

        try:
            await asyncio.wait({body, suspended}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            ctx.close()
            body.cancel()
            suspended.cancel()
            raise

        suspended.cancel()
        ctx.close()

        if ctx.suspension is not None:
            # Parked primitives never return; release the body
            body.cancel()
            body.add_done_callback(_discard_result)
            return Suspended(ctx.suspension)

        if body.cancelled():
            return Failed(FlowFailure("flow body was cancelled", ctx.operation.id))
        error = body.exception()
        if error is not None:
            return Failed(error)
        return Completed(body.result())

    @staticmethod
    async def _run_body(definition: FlowDefinition, input: Any) -> Any:
        # A flow started from inside a step runs its own steps and suspensions
        STEP_SCOPE.set(None)
        return await definition.fn(input)

    @staticmethod
    def _check_history(ctx: Context, outcome: FlowOutcome) -> FlowOutcome:
        """Fail the attempt if replay diverged from the recorded history."""
        if ctx.divergence is not None:
            return Failed(ctx.divergence)
        if not ctx.target_consumed:
            target = ctx.resume_target
            return Failed(
                NonDeterminismError(
                    f"operation {ctx.operation.id} did not reach {target.kind.value} "
                    f"'{target.name}' ({target.occurrence_index}) on replay"
                )
            )
        return outcome

    async def _write_back(self, operation: Operation, outcome: FlowOutcome) -> None:
        expected_revision = operation.revision
        self._apply(operation, outcome)
        operation.revision = expected_revision + 1
        operation.updated_at = self.clock()

        try:
            written = await self._store.compare_and_set(
                operation, OperationStatus.RUNNING, expected_revision
            )
        except StorageError as e:
            if isinstance(outcome, Failed):
                raise
            # A run never stays running: store it as failed instead
            logger.error(f"Could not store outcome of operation {operation.id}: {e}")
            operation.result = None
            operation.pending_suspension = None
            self._apply(
                operation,
                Failed(FlowFailure(f"outcome could not be stored: {e}", operation.id)),
            )
            written = await self._store.compare_and_set(
                operation, OperationStatus.RUNNING, expected_revision
            )

        if not written:
            raise StorageError(
                f"operation {operation.id} changed while running; result not written"
            )

    @staticmethod
    def _apply(operation: Operation, outcome: FlowOutcome) -> None:
        match outcome:
            case Completed(value):
                operation.status = OperationStatus.SUCCEEDED
                operation.result = value
                logger.info(f"Operation {operation.id} ({operation.flow_name}) succeeded")
            case Suspended(pending):
                operation.status = OperationStatus.SUSPENDED
                operation.pending_suspension = pending
                logger.info(
                    f"Operation {operation.id} ({operation.flow_name}) suspended on "
                    f"{pending.kind.value} '{pending.name}'"
                )
            case Failed():
                operation.status = OperationStatus.FAILED
                operation.error = outcome.message
                logger.info(
                    f"Operation {operation.id} ({operation.flow_name}) failed: {outcome.message}"
                )


def _discard_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()

