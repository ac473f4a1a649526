"""Error taxonomy for flow execution.

Every error raised by the engine derives from FlowError so callers can
catch the whole family in one place. Storage problems are reported with
StorageError from pyresume.storage.base instead.
"""

from __future__ import annotations


class FlowError(Exception):
    """Base class for all flow execution errors."""


class StepFailure(FlowError):
    """A memoized step raised, either now or in a recorded earlier run.

    On replay the original exception object is gone; only its message
    survives in the cursor, so `message` is always available while
    `__cause__` is only set for the run that actually executed the step.
    """

    def __init__(self, step_name: str, occurrence_index: int, message: str):
        self.step_name = step_name
        self.occurrence_index = occurrence_index
        self.message = message
        super().__init__(f"step '{step_name}' (occurrence {occurrence_index}) failed: {message}")


class ResumeMismatch(FlowError):
    """Resume input does not fit the pending suspension.

    Raised for a wrong suspension name or kind, an operation that is not
    suspended, or interrupt input that fails its schema. The stored
    operation is left untouched.
    """


class ConcurrentResumeConflict(FlowError):
    """Another resume of the same operation won the race."""


class FlowFailure(FlowError):
    """A flow (or a sub-flow awaited inline) finished in the failed state."""

    def __init__(self, message: str, operation_id: str | None = None):
        self.operation_id = operation_id
        super().__init__(message)


class StreamFailure(FlowError):
    """The producer behind a streaming response raised."""


class NonDeterminismError(FlowError):
    """Replay diverged from the recorded history of the operation.

    The body reached a different suspension point than the pending one,
    finished without reaching it, or called a step with different
    arguments than it did originally.
    """


class OperationNotFound(FlowError):
    """No operation with the requested id exists in the store."""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"operation not found: {operation_id}")


class UnknownFlowError(FlowError):
    """A flow name was not registered with the engine."""


class InvalidInput(FlowError):
    """Flow input does not satisfy the flow's input schema."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        super().__init__(message)


class FlowContextError(FlowError):
    """A suspension primitive was called outside of a running flow."""
