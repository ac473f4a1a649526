"""Core types shared across pyresume.

The execution context lives in pyresume.core.context and is imported
from there directly, since it depends on the data model.
"""

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

__all__ = [
    "OperationStatus",
    "SuspensionKind",
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
