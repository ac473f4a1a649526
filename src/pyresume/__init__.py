"""
pyresume - durable, resumable async flows.

Flows are async functions whose steps are memoized in a persisted
operation record. A flow can pause on a timer, on external input, or on
other flows, and a later resume replays the recorded steps and carries
on from the point where it stopped. A streaming bridge turns chunk
callbacks into ordered async streams with a final result.

Example:
    ```python
    from pyresume import FlowEngine, InMemoryOperationStore, flow, interrupt, run_step

    @flow(name="review")
    async def review(doc):
        summary = await run_step("summarize", lambda: summarize(doc))
        verdict = await interrupt("approve", {"type": "boolean"})
        return {"summary": summary, "approved": verdict}

    engine = FlowEngine(InMemoryOperationStore(), flows=[review])
    state = await engine.start(review, "draft")          # suspended
    state = await engine.resume(state.id, "approve", True)
    ```
"""

from pyresume.core.context import Context, get_current_context
from pyresume.core.errors import (
    ConcurrentResumeConflict,
    FlowContextError,
    FlowError,
    FlowFailure,
    InvalidInput,
    NonDeterminismError,
    OperationNotFound,
    ResumeMismatch,
    StepFailure,
    StreamFailure,
    UnknownFlowError,
)
from pyresume.core.status import OperationStatus, SuspensionKind
from pyresume.core.validation import JsonSchemaValidator, Validator
from pyresume.decorators import flow, step
from pyresume.executor import (
    Completed,
    Failed,
    FlowDefinition,
    FlowEngine,
    FlowOutcome,
    FlowState,
    Registry,
    Suspended,
    Worker,
    WorkerHandle,
    fan_out,
    interrupt,
    is_completed,
    is_failed,
    is_suspended,
    run_flow,
    run_map,
    run_step,
    schedule_flow,
    sleep,
    wait_for,
)
from pyresume.models import (
    InterruptSuspension,
    Operation,
    PendingSuspension,
    SleepSuspension,
    StepOutcome,
    StepRecord,
    SubflowWaitSuspension,
)
from pyresume.runtime import Runtime
from pyresume.storage import OperationStore, StorageError
from pyresume.storage.memory import InMemoryOperationStore
from pyresume.streaming import (
    Channel,
    ChannelClosed,
    ChunkRecord,
    ErrorRecord,
    FinalRecord,
    StreamingResponse,
    decode_records,
    encode_records,
    generate_stream,
    send_chunk,
    stream_call,
)

__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy access to backends with optional drivers."""
    if name in ("SqliteOperationStore", "RedisOperationStore"):
        import pyresume.storage as storage

        return getattr(storage, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Decorators
    "flow",
    "step",
    # Engine
    "FlowEngine",
    "FlowState",
    "FlowDefinition",
    "Registry",
    "Runtime",
    "Worker",
    "WorkerHandle",
    # Primitives
    "run_step",
    "sleep",
    "interrupt",
    "schedule_flow",
    "wait_for",
    "run_flow",
    "fan_out",
    "run_map",
    "send_chunk",
    # Outcomes
    "Completed",
    "Suspended",
    "Failed",
    "FlowOutcome",
    "is_completed",
    "is_suspended",
    "is_failed",
    # Context
    "Context",
    "get_current_context",
    # Models
    "Operation",
    "OperationStatus",
    "StepOutcome",
    "StepRecord",
    "SuspensionKind",
    "PendingSuspension",
    "SleepSuspension",
    "InterruptSuspension",
    "SubflowWaitSuspension",
    # Storage
    "OperationStore",
    "StorageError",
    "InMemoryOperationStore",
    "SqliteOperationStore",
    "RedisOperationStore",
    # Validation
    "Validator",
    "JsonSchemaValidator",
    # Streaming
    "Channel",
    "ChannelClosed",
    "StreamingResponse",
    "ChunkRecord",
    "FinalRecord",
    "ErrorRecord",
    "stream_call",
    "generate_stream",
    "encode_records",
    "decode_records",
    # Errors
    "FlowError",
    "StepFailure",
    "ResumeMismatch",
    "ConcurrentResumeConflict",
    "FlowFailure",
    "StreamFailure",
    "NonDeterminismError",
    "OperationNotFound",
    "UnknownFlowError",
    "InvalidInput",
    "FlowContextError",
]
