"""
Storage adapter tests.

The same contract is checked against the in-memory and SQLite backends;
SQLite file durability is covered separately.
"""

from datetime import UTC, datetime

import pytest

from pyresume import (
    FlowEngine,
    InterruptSuspension,
    Operation,
    OperationStatus,
    StepOutcome,
    StepRecord,
    StorageError,
    flow,
    interrupt,
    run_step,
)
from pyresume.storage import InMemoryOperationStore, SqliteOperationStore


@pytest.fixture(params=["memory", "sqlite"])
async def store(request):
    if request.param == "memory":
        backend = InMemoryOperationStore()
    else:
        backend = await SqliteOperationStore.in_memory()
    yield backend
    await backend.close()


def make_operation(operation_id: str = "op-1", **overrides) -> Operation:
    fields = {
        "id": operation_id,
        "flow_name": "review",
        "input": {"doc": "draft"},
        "created_at": datetime(2026, 1, 1, tzinfo=UTC),
        "updated_at": datetime(2026, 1, 1, tzinfo=UTC),
    }
    fields.update(overrides)
    return Operation(**fields)


def suspended(operation: Operation, revision: int) -> Operation:
    operation.status = OperationStatus.SUSPENDED
    operation.pending_suspension = InterruptSuspension("approve", 0)
    operation.revision = revision
    return operation


# ==============================================================================
# TEST 1: Basic CRUD
# ==============================================================================


@pytest.mark.asyncio
async def test_create_and_get(store):
    operation = make_operation()
    operation.cursor.append(StepRecord("summarize", 0, StepOutcome.ok("S")))

    await store.create(operation)
    loaded = await store.get("op-1")

    assert loaded == operation
    assert loaded is not operation


@pytest.mark.asyncio
async def test_create_duplicate_id_fails(store):
    await store.create(make_operation())

    with pytest.raises(StorageError):
        await store.create(make_operation())


@pytest.mark.asyncio
async def test_get_missing_returns_none(store):
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_returned_copies_are_independent(store):
    await store.create(make_operation())

    loaded = await store.get("op-1")
    loaded.cursor.append(StepRecord("x", 0, StepOutcome.ok(1)))

    assert (await store.get("op-1")).cursor == []


@pytest.mark.asyncio
async def test_non_json_values_are_rejected(store):
    with pytest.raises(StorageError):
        await store.create(make_operation(input={"when": object()}))


@pytest.mark.asyncio
async def test_delete_and_reset(store):
    await store.create(make_operation("a"))
    await store.create(make_operation("b"))

    assert await store.delete("a") is True
    assert await store.delete("a") is False
    assert await store.get("a") is None

    await store.reset()
    assert await store.get("b") is None


# ==============================================================================
# TEST 2: Compare-and-set
# ==============================================================================


@pytest.mark.asyncio
async def test_compare_and_set_succeeds_on_match(store):
    await store.create(suspended(make_operation(), revision=1))

    update = await store.get("op-1")
    update.status = OperationStatus.RUNNING
    update.pending_suspension = None
    update.revision = 2

    assert await store.compare_and_set(update, OperationStatus.SUSPENDED, 1) is True
    assert (await store.get("op-1")).status == OperationStatus.RUNNING


@pytest.mark.asyncio
async def test_compare_and_set_rejects_stale_revision(store):
    await store.create(suspended(make_operation(), revision=3))

    update = await store.get("op-1")
    update.status = OperationStatus.RUNNING
    update.pending_suspension = None
    update.revision = 3

    assert await store.compare_and_set(update, OperationStatus.SUSPENDED, 2) is False
    assert await store.compare_and_set(update, OperationStatus.RUNNING, 3) is False

    unchanged = await store.get("op-1")
    assert unchanged.status == OperationStatus.SUSPENDED
    assert unchanged.revision == 3


@pytest.mark.asyncio
async def test_compare_and_set_on_missing_operation(store):
    assert await store.compare_and_set(make_operation(), OperationStatus.RUNNING, 0) is False


@pytest.mark.asyncio
async def test_list_suspended(store):
    await store.create(make_operation("running"))
    await store.create(suspended(make_operation("waiting"), revision=1))
    await store.create(
        make_operation("done", status=OperationStatus.SUCCEEDED, result={"ok": True})
    )

    listed = await store.list_suspended()

    assert [operation.id for operation in listed] == ["waiting"]
    assert listed[0].pending_suspension.name == "approve"


# ==============================================================================
# TEST 3: SQLite specifics
# ==============================================================================


@pytest.mark.asyncio
async def test_sqlite_requires_connect():
    store = SqliteOperationStore(":memory:")

    with pytest.raises(StorageError, match="Not connected"):
        await store.get("op-1")


@pytest.mark.asyncio
async def test_sqlite_store_as_context_manager(temp_db_path):
    async with SqliteOperationStore(str(temp_db_path)) as store:
        await store.create(make_operation())
        assert await store.get("op-1") is not None


@pytest.mark.durability
@pytest.mark.asyncio
async def test_suspended_operation_survives_reopen(temp_db_path, clock):
    """A flow suspended in one process resumes from the file in another."""
    executed = []

    async def summarize():
        executed.append("summarize")
        return "SUMMARY"

    @flow(name="durable-review")
    async def durable_review(_):
        summary = await run_step("summarize", summarize)
        approved = await interrupt("approve", {"type": "boolean"})
        return {"summary": summary, "approved": approved}

    first = SqliteOperationStore(str(temp_db_path))
    await first.connect()
    state = await FlowEngine(first, clock=clock).start(durable_review)
    await first.close()

    assert state.status == OperationStatus.SUSPENDED

    second = SqliteOperationStore(str(temp_db_path))
    await second.connect()
    try:
        engine = FlowEngine(second, flows=[durable_review], clock=clock)
        state = await engine.resume(state.id, "approve", True)
        operation = await engine.get_status(state.id)
    finally:
        await second.close()

    assert state.result == {"summary": "SUMMARY", "approved": True}
    assert executed == ["summarize"]
    assert [r.key for r in operation.cursor] == [("summarize", 0), ("approve", 0)]
