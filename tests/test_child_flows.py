"""Tests for sub-flow dispatch (schedule_flow), waiting (wait_for) and run_flow."""

import asyncio

import pytest

from pyresume import (
    FlowEngine,
    OperationNotFound,
    OperationStatus,
    StepFailure,
    SubflowWaitSuspension,
    Worker,
    flow,
    interrupt,
    run_flow,
    run_map,
    run_step,
    schedule_flow,
    wait_for,
)


async def _double(x):
    return x * 2


def gated_child(gate: asyncio.Event, name: str = "child"):
    """Child flow that doubles its input once `gate` opens."""

    @flow(name=name)
    async def child(x):
        await gate.wait()
        return await run_step("double", lambda: _double(x))

    return child


def gated_broken_child(gate: asyncio.Event):
    @flow(name="broken-child")
    async def broken_child(x):
        await gate.wait()
        raise RuntimeError(f"child {x} broke")

    return broken_child


def fan_out_parent(child):
    @flow(name="parent")
    async def parent(items):
        ids = await run_map("dispatch", items, lambda item: schedule_flow(child, item), 2)
        states = await wait_for("children", ids)
        return [state["result"] for state in states]

    return parent


# ==============================================================================
# TEST 1: Dispatch and wait
# ==============================================================================


@pytest.mark.asyncio
async def test_parent_suspends_until_children_finish(engine):
    gate = asyncio.Event()
    parent = fan_out_parent(gated_child(gate))

    state = await engine.start(parent, [1, 2, 3])

    assert state.status == OperationStatus.SUSPENDED
    assert isinstance(state.pending_suspension, SubflowWaitSuspension)
    assert len(state.pending_suspension.watched_ids) == 3

    # Children still blocked: nothing to resume yet
    assert await Worker(engine).poll_once() == 0

    gate.set()
    await engine.drain()
    resumed = await Worker(engine).poll_once()

    final = await engine.get_status(state.id)
    assert resumed == 1
    assert final.status == OperationStatus.SUCCEEDED
    assert final.result == [2, 4, 6]


@pytest.mark.asyncio
async def test_dispatch_is_not_repeated_on_replay(engine, in_memory_store):
    gate = asyncio.Event()
    parent = fan_out_parent(gated_child(gate))

    state = await engine.start(parent, [5, 6])
    gate.set()
    await engine.drain()

    # One parent plus two children
    assert len(in_memory_store) == 3

    state = await engine.resume(state.id, "children")

    assert state.result == [10, 12]
    assert len(in_memory_store) == 3


@pytest.mark.asyncio
async def test_schedule_after_fan_out_dispatch_starts_a_new_child(engine, in_memory_store):
    """Dispatches nested in fan-out items do not take occurrences of later dispatches."""
    gate = asyncio.Event()
    gate.set()
    child = gated_child(gate)

    @flow(name="dispatch-then-more")
    async def dispatch_then_more(items):
        ids = await run_map("dispatch", items, lambda item: schedule_flow(child, item))
        await interrupt("go")
        extra = await schedule_flow(child, 100)
        return {"ids": ids, "extra": extra}

    state = await engine.start(dispatch_then_more, [1])
    state = await engine.resume(state.id, "go")
    await engine.drain()

    assert state.status == OperationStatus.SUCCEEDED
    assert state.result["extra"] not in state.result["ids"]
    # Parent, the fanned-out child and the child scheduled after the resume
    assert len(in_memory_store) == 3

    operation = await engine.get_status(state.id)
    assert [r.key for r in operation.cursor] == [
        ("dispatch", 0),
        ("go", 0),
        ("schedule:child", 0),
    ]
    extra = await engine.get_status(state.result["extra"])
    assert extra.result == 200


@pytest.mark.asyncio
async def test_wait_preserves_watched_order(engine):
    gate = asyncio.Event()
    child = gated_child(gate)

    @flow(name="ordered-parent")
    async def ordered_parent(_):
        slow = await schedule_flow(child, 10, name="dispatch-slow")
        fast = await schedule_flow(child, 1, name="dispatch-fast")
        states = await wait_for("both", [fast, slow])
        return {"results": [s["result"] for s in states], "ids": [s["id"] for s in states],
                "fast": fast, "slow": slow}

    state = await engine.start(ordered_parent)
    gate.set()
    await engine.drain()
    state = await engine.resume(state.id, "both")

    assert state.result["results"] == [2, 20]
    assert state.result["ids"] == [state.result["fast"], state.result["slow"]]


@pytest.mark.asyncio
async def test_wait_reports_failed_children(engine):
    gate = asyncio.Event()
    child = gated_child(gate)
    broken_child = gated_broken_child(gate)

    @flow(name="mixed-parent")
    async def mixed_parent(_):
        good = await schedule_flow(child, 1)
        bad = await schedule_flow(broken_child, 2)
        return await wait_for("all", [good, bad])

    state = await engine.start(mixed_parent)
    gate.set()
    await engine.drain()
    state = await engine.resume(state.id, "all")

    good, bad = state.result
    assert state.status == OperationStatus.SUCCEEDED
    assert good["status"] == "succeeded"
    assert good["result"] == 2
    assert bad["status"] == "failed"
    assert bad["error"] == "child 2 broke"


@pytest.mark.asyncio
async def test_resume_before_children_finish_resuspends(engine):
    @flow(name="waits-on-human")
    async def waits_on_human(_):
        return await interrupt("answer")

    @flow(name="patient-parent")
    async def patient_parent(_):
        child_id = await schedule_flow(waits_on_human, None)
        return await wait_for("human", [child_id])

    state = await engine.start(patient_parent)
    await engine.drain()
    child_id = state.pending_suspension.watched_ids[0]

    state = await engine.resume(state.id, "human")
    assert state.status == OperationStatus.SUSPENDED

    await engine.resume(child_id, "answer", 42)
    state = await engine.resume(state.id, "human")

    assert state.status == OperationStatus.SUCCEEDED
    assert state.result[0]["result"] == 42


@pytest.mark.asyncio
async def test_wait_for_unknown_id_fails_flow(engine):
    @flow(name="lost-parent")
    async def lost_parent(_):
        return await wait_for("ghost", ["does-not-exist"])

    state = await engine.start(lost_parent)

    assert state.status == OperationStatus.FAILED
    assert "does-not-exist" in state.error


@pytest.mark.asyncio
async def test_get_status_unknown_id(engine):
    with pytest.raises(OperationNotFound):
        await engine.get_status("nope")


@pytest.mark.asyncio
async def test_children_resolved_by_name(in_memory_store, clock):
    gate = asyncio.Event()
    gate.set()
    engine = FlowEngine(in_memory_store, flows=[gated_child(gate)], clock=clock)

    @flow(name="by-name-parent")
    async def by_name_parent(_):
        child_id = await schedule_flow("child", 4)
        return await wait_for("one", [child_id])

    state = await engine.start(by_name_parent)
    await engine.drain()
    if state.status == OperationStatus.SUSPENDED:
        state = await engine.resume(state.id, "one")

    assert state.result[0]["result"] == 8


# ==============================================================================
# TEST 2: Inline sub-flows
# ==============================================================================


@pytest.mark.asyncio
async def test_run_flow_returns_child_result(engine, in_memory_store):
    gate = asyncio.Event()
    gate.set()
    child = gated_child(gate)

    @flow(name="inline-parent")
    async def inline_parent(x):
        doubled = await run_flow(child, x)
        await interrupt("confirm")
        return doubled + 1

    state = await engine.start(inline_parent, 20)
    state = await engine.resume(state.id, "confirm")

    assert state.result == 41
    # The inline child ran once and has its own operation
    assert len(in_memory_store) == 2


@pytest.mark.asyncio
async def test_run_flow_failure_surfaces_as_step_failure(engine):
    gate = asyncio.Event()
    gate.set()
    broken_child = gated_broken_child(gate)
    caught = []

    @flow(name="careful-parent")
    async def careful_parent(_):
        try:
            await run_flow(broken_child, 9)
        except StepFailure as e:
            caught.append(e.message)
        return "recovered"

    state = await engine.start(careful_parent)

    assert state.result == "recovered"
    assert caught == ["sub-flow 'broken-child' failed: child 9 broke"]
