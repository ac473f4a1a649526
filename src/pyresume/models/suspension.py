"""Pending suspension variants.

A suspended operation stores exactly one of these. Each variant carries
the name and occurrence index of the primitive call that suspended, so
a resume can be matched against it and replay can recognise the point
where new input has to be consumed.

Persisted as a tagged dict: {"kind": "sleep" | "interrupt" | "subflowWait", ...}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyresume.core.status import SuspensionKind


def _format_instant(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class SleepSuspension:
    """Waiting for wall-clock time to reach `wake_at`."""

    name: str
    occurrence_index: int
    wake_at: datetime

    kind = SuspensionKind.SLEEP

    def is_due(self, now: datetime) -> bool:
        return now >= self.wake_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "occurrenceIndex": self.occurrence_index,
            "wakeAt": _format_instant(self.wake_at),
        }


@dataclass(frozen=True)
class InterruptSuspension:
    """Waiting for external input matching `input_schema`.

    A None schema accepts any JSON value.
    """

    name: str
    occurrence_index: int
    input_schema: dict[str, Any] | None = None

    kind = SuspensionKind.INTERRUPT

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "occurrenceIndex": self.occurrence_index,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class SubflowWaitSuspension:
    """Waiting for every watched operation to become terminal."""

    name: str
    occurrence_index: int
    watched_ids: tuple[str, ...] = field(default_factory=tuple)

    kind = SuspensionKind.SUBFLOW_WAIT

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "occurrenceIndex": self.occurrence_index,
            "watchedIds": list(self.watched_ids),
        }


PendingSuspension = SleepSuspension | InterruptSuspension | SubflowWaitSuspension


def suspension_from_dict(data: dict[str, Any]) -> PendingSuspension:
    """Rebuild a suspension from its persisted form.

    Raises:
        ValueError: If the kind tag is unknown
    """
    kind = SuspensionKind(data["kind"])
    name = data["name"]
    occurrence = int(data.get("occurrenceIndex", 0))

    if kind is SuspensionKind.SLEEP:
        return SleepSuspension(name, occurrence, _parse_instant(data["wakeAt"]))
    if kind is SuspensionKind.INTERRUPT:
        return InterruptSuspension(name, occurrence, data.get("inputSchema"))
    return SubflowWaitSuspension(name, occurrence, tuple(data.get("watchedIds", ())))
