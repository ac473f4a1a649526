"""
Operation represents one durable flow run and its replay tape.

Design principles:
- StepRecord and StepOutcome are immutable once written
- Operation is mutable only while checked out by the engine
- Serialization-friendly: to_dict() produces the persisted JSON layout
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyresume.core.status import OperationStatus
from pyresume.models.suspension import PendingSuspension, suspension_from_dict


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StepOutcome:
    """Result of a step: either `ok(value)` or `err(message)`.

    Persisted as {"ok": value} or {"err": message}. A step that returned
    None is still an ok outcome; `is_ok` decides, never the value.
    """

    is_ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, value: Any) -> StepOutcome:
        return cls(is_ok=True, value=value)

    @classmethod
    def err(cls, message: str) -> StepOutcome:
        return cls(is_ok=False, error=message)

    def to_dict(self) -> dict[str, Any]:
        if self.is_ok:
            return {"ok": self.value}
        return {"err": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepOutcome:
        if "ok" in data:
            return cls.ok(data["ok"])
        if "err" in data:
            return cls.err(data["err"])
        raise ValueError(f"step outcome must have 'ok' or 'err', got keys {sorted(data)}")


@dataclass(frozen=True)
class StepRecord:
    """
    One memoized step in an operation's cursor.

    Keyed by (step_name, occurrence_index). The occurrence index counts
    earlier calls with the same name in the same run and is assigned by
    the engine, never by the caller.
    """

    step_name: str
    occurrence_index: int
    outcome: StepOutcome

    fingerprint: int | None = None
    """Hash of the step arguments for @step calls, used to detect replay drift."""

    @property
    def key(self) -> tuple[str, int]:
        return (self.step_name, self.occurrence_index)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stepName": self.step_name,
            "occurrenceIndex": self.occurrence_index,
            "outcome": self.outcome.to_dict(),
        }
        if self.fingerprint is not None:
            data["fingerprint"] = self.fingerprint
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepRecord:
        return cls(
            step_name=data["stepName"],
            occurrence_index=int(data["occurrenceIndex"]),
            outcome=StepOutcome.from_dict(data["outcome"]),
            fingerprint=data.get("fingerprint"),
        )


@dataclass
class Operation:
    """
    Durable record of one flow run.

    Exactly one of running / suspended / terminal holds at any time:
    - pending_suspension is set if and only if status is SUSPENDED
    - error is only set when status is FAILED
    - result is only meaningful when status is SUCCEEDED

    The cursor only ever grows. Records are appended in completion order
    and never reordered or removed by a resume.
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    id: str
    flow_name: str

    # ==========================================================================
    # State
    # ==========================================================================

    status: OperationStatus = OperationStatus.RUNNING
    cursor: list[StepRecord] = field(default_factory=list)
    pending_suspension: PendingSuspension | None = None
    result: Any = None
    error: str | None = None

    input: Any = None
    """Flow input, kept so a resume can replay the body with the same argument."""

    revision: int = 0
    """Bumped on every engine write; compared by store compare-and-set."""

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        """Validate invariants.

        Raises:
            ValueError: If status and pending_suspension/error disagree
        """
        if not isinstance(self.status, OperationStatus):
            self.status = OperationStatus(self.status)

        if self.status == OperationStatus.SUSPENDED and self.pending_suspension is None:
            raise ValueError(f"operation {self.id} is suspended but has no pending suspension")

        if self.status != OperationStatus.SUSPENDED and self.pending_suspension is not None:
            raise ValueError(
                f"operation {self.id} has a pending suspension but status is {self.status.value}"
            )

        if self.error is not None and self.status != OperationStatus.FAILED:
            raise ValueError(f"operation {self.id} carries an error but status is {self.status.value}")

        if self.revision < 0:
            raise ValueError(f"revision must be non-negative, got {self.revision}")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def find_step(self, step_name: str, occurrence_index: int) -> StepRecord | None:
        """Return the recorded step for a key, or None if not reached yet."""
        for record in self.cursor:
            if record.step_name == step_name and record.occurrence_index == occurrence_index:
                return record
        return None

    def copy(self) -> Operation:
        """Return an independent copy (values deep-copied)."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted JSON layout."""
        data: dict[str, Any] = {
            "id": self.id,
            "flowName": self.flow_name,
            "status": self.status.value,
            "cursor": [record.to_dict() for record in self.cursor],
            "input": self.input,
            "revision": self.revision,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.pending_suspension is not None:
            data["pendingSuspension"] = self.pending_suspension.to_dict()
        if self.status == OperationStatus.SUCCEEDED:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Operation:
        """Rebuild an operation from its persisted JSON layout."""
        pending = data.get("pendingSuspension")
        created_at = data.get("createdAt")
        updated_at = data.get("updatedAt")
        return cls(
            id=data["id"],
            flow_name=data["flowName"],
            status=OperationStatus(data["status"]),
            cursor=[StepRecord.from_dict(item) for item in data.get("cursor", [])],
            pending_suspension=suspension_from_dict(pending) if pending else None,
            result=data.get("result"),
            error=data.get("error"),
            input=data.get("input"),
            revision=int(data.get("revision", 0)),
            created_at=datetime.fromisoformat(created_at) if created_at else _utcnow(),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else _utcnow(),
        )
