"""Data model for durable flow operations."""

from pyresume.core.status import OperationStatus, SuspensionKind
from pyresume.models.operation import Operation, StepOutcome, StepRecord
from pyresume.models.suspension import (
    InterruptSuspension,
    PendingSuspension,
    SleepSuspension,
    SubflowWaitSuspension,
    suspension_from_dict,
)

__all__ = [
    "Operation",
    "OperationStatus",
    "StepOutcome",
    "StepRecord",
    "SuspensionKind",
    "PendingSuspension",
    "SleepSuspension",
    "InterruptSuspension",
    "SubflowWaitSuspension",
    "suspension_from_dict",
]
