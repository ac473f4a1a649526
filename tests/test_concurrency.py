"""
Concurrency tests for single-winner resume.

Two resumes racing on the same suspended operation must produce exactly
one winner; the loser gets ConcurrentResumeConflict and no step after the
suspension runs twice.
"""

import asyncio

import pytest

from pyresume import (
    ConcurrentResumeConflict,
    FlowEngine,
    OperationStatus,
    Worker,
    flow,
    interrupt,
    run_step,
    sleep,
)


def counting_flow(executed: list, name: str = "race"):
    @flow(name=name)
    async def race(_):
        await interrupt("go")
        return await run_step("after", lambda: _mark(executed))

    return race


async def _mark(executed):
    executed.append(1)
    await asyncio.sleep(0.01)
    return len(executed)


# ==============================================================================
# TEST 1: Two racing resumes
# ==============================================================================


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_two_concurrent_resumes_single_winner(engine):
    executed = []
    state = await engine.start(counting_flow(executed))

    results = await asyncio.gather(
        engine.resume(state.id, "go", "a"),
        engine.resume(state.id, "go", "b"),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]

    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConcurrentResumeConflict)
    assert winners[0].status == OperationStatus.SUCCEEDED
    assert executed == [1]


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_many_concurrent_resumes_on_sqlite(sqlite_memory_store, clock):
    """Same race where every store call yields to the event loop."""
    executed = []
    engine = FlowEngine(sqlite_memory_store, clock=clock)
    state = await engine.start(counting_flow(executed, "sqlite-race"))

    results = await asyncio.gather(
        *(engine.resume(state.id, "go", i) for i in range(5)),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    assert len(winners) == 1
    assert all(
        isinstance(r, ConcurrentResumeConflict) for r in results if isinstance(r, BaseException)
    )
    assert executed == [1]

    operation = await engine.get_status(state.id)
    assert operation.status == OperationStatus.SUCCEEDED
    assert len(operation.cursor) == 2


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_loser_leaves_winner_state_intact(engine):
    executed = []
    state = await engine.start(counting_flow(executed))

    await asyncio.gather(
        engine.resume(state.id, "go", "first"),
        engine.resume(state.id, "go", "second"),
        return_exceptions=True,
    )

    operation = await engine.get_status(state.id)
    go_records = [r for r in operation.cursor if r.step_name == "go"]

    assert len(go_records) == 1
    assert go_records[0].outcome.value == "first"


# ==============================================================================
# TEST 2: Competing workers
# ==============================================================================


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_two_workers_resume_a_due_sleep_once(engine, clock):
    executed = []

    @flow(name="sleeper")
    async def sleeper(_):
        await sleep("rest", 50)
        return await run_step("after", lambda: _mark(executed))

    state = await engine.start(sleeper)
    clock.advance(milliseconds=50)

    counts = await asyncio.gather(
        Worker(engine, "w1").poll_once(),
        Worker(engine, "w2").poll_once(),
    )

    assert sum(counts) == 1
    assert executed == [1]
    assert (await engine.get_status(state.id)).status == OperationStatus.SUCCEEDED
