"""Operation status and suspension kind enums.

Values are the lowercase/camelCase strings used in the persisted JSON
layout, so `OperationStatus("suspended")` round-trips a stored record.
"""

from enum import Enum


class OperationStatus(str, Enum):
    """Lifecycle state of a flow operation.

    State machine:
        RUNNING -> SUSPENDED -> RUNNING -> ... -> SUCCEEDED | FAILED

    A resume is only legal from SUSPENDED. SUCCEEDED and FAILED are
    terminal and never change again.
    """

    RUNNING = "running"
    SUSPENDED = "suspended"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return True if no further transitions are possible."""
        return self in (OperationStatus.SUCCEEDED, OperationStatus.FAILED)

    def __str__(self) -> str:
        return self.value


class SuspensionKind(str, Enum):
    """What a suspended operation is waiting for."""

    SLEEP = "sleep"
    INTERRUPT = "interrupt"
    SUBFLOW_WAIT = "subflowWait"

    def __str__(self) -> str:
        return self.value
