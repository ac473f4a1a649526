"""
Run attempt outcomes.

One attempt of a flow body (a start or a resume) ends in exactly one of
three states, returned to the engine as a value:

- Completed(value): the body returned
- Suspended(pending): a primitive suspended the run
- Failed(error): the body raised, or replay diverged from history

A suspension is never delivered by an exception travelling through the
author's frames, so a broad `except Exception` in flow code cannot
swallow it.

Example:
    ```python
    outcome = await engine._attempt(operation, definition, ctx)

    match outcome:
        case Completed(value):
            print(f"Flow completed: {value}")
        case Suspended(pending):
            print(f"Flow waiting on {pending.kind}: {pending.name}")
        case Failed(error):
            print(f"Flow failed: {error}")
    ```
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from pyresume.models import PendingSuspension

__all__ = [
    "Completed",
    "Suspended",
    "Failed",
    "FlowOutcome",
    "is_completed",
    "is_suspended",
    "is_failed",
]

R = TypeVar("R")


@dataclass(frozen=True)
class Completed(Generic[R]):
    """The flow body returned `value`."""

    value: R

    def __str__(self) -> str:
        return f"Completed({self.value!r})"


@dataclass(frozen=True)
class Suspended:
    """The run paused on `pending` and was persisted as suspended."""

    pending: PendingSuspension

    def __str__(self) -> str:
        return (
            f"Suspended({self.pending.kind.value} '{self.pending.name}' "
            f"#{self.pending.occurrence_index})"
        )


@dataclass(frozen=True)
class Failed:
    """The flow body raised `error` (or replay diverged)."""

    error: BaseException

    @property
    def message(self) -> str:
        """Error text as stored on the operation."""
        return str(self.error) or type(self.error).__name__

    def __str__(self) -> str:
        return f"Failed({type(self.error).__name__}: {self.error})"


# FlowOutcome is the tagged union handled by the engine.
#
#     match outcome:
#         case Completed(value): ...
#         case Suspended(pending): ...
#         case Failed(error): ...
#
FlowOutcome = Completed[R] | Suspended | Failed


# =============================================================================
# TYPE GUARDS FOR FLOW OUTCOME
# =============================================================================


def is_completed(outcome: FlowOutcome) -> bool:
    """Return True if the attempt completed normally."""
    return isinstance(outcome, Completed)


def is_suspended(outcome: FlowOutcome) -> bool:
    """Return True if the attempt suspended."""
    return isinstance(outcome, Suspended)


def is_failed(outcome: FlowOutcome) -> bool:
    """Return True if the attempt failed."""
    return isinstance(outcome, Failed)
