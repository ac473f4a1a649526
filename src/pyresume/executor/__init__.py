"""Execution machinery: engine, memoized steps, suspension primitives, fan-out."""

from pyresume.executor.child_flow import run_flow, schedule_flow, wait_for
from pyresume.executor.engine import FlowEngine, FlowState
from pyresume.executor.fanout import fan_out, run_map
from pyresume.executor.interrupt import interrupt
from pyresume.executor.memoizer import run_step
from pyresume.executor.outcome import (
    Completed,
    Failed,
    FlowOutcome,
    Suspended,
    is_completed,
    is_failed,
    is_suspended,
)
from pyresume.executor.registry import FlowDefinition, Registry
from pyresume.executor.timer import sleep
from pyresume.executor.worker import Worker, WorkerHandle

__all__ = [
    "FlowEngine",
    "FlowState",
    "FlowDefinition",
    "Registry",
    "Worker",
    "WorkerHandle",
    "run_step",
    "sleep",
    "interrupt",
    "schedule_flow",
    "wait_for",
    "run_flow",
    "fan_out",
    "run_map",
    "Completed",
    "Suspended",
    "Failed",
    "FlowOutcome",
    "is_completed",
    "is_suspended",
    "is_failed",
]
