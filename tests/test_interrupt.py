"""Tests for external-input interrupts and resume validation."""

import pytest

from pyresume import (
    InterruptSuspension,
    OperationStatus,
    ResumeMismatch,
    StepFailure,
    SuspensionKind,
    flow,
    interrupt,
    run_step,
)

APPROVAL_SCHEMA = {
    "type": "object",
    "properties": {"approved": {"type": "boolean"}, "note": {"type": "string"}},
    "required": ["approved"],
}


@flow(name="approval")
async def approval(doc):
    summary = await run_step("summarize", lambda: _summarize(doc))
    decision = await interrupt("approve", APPROVAL_SCHEMA, lambda answer: answer["approved"])
    return {"summary": summary, "approved": decision}


async def _summarize(doc):
    return doc.upper()


# ==============================================================================
# TEST 1: Suspension exposes name and schema
# ==============================================================================


@pytest.mark.asyncio
async def test_interrupt_suspends_with_schema(engine):
    state = await engine.start(approval, "draft")

    assert state.status == OperationStatus.SUSPENDED
    assert isinstance(state.pending_suspension, InterruptSuspension)
    assert state.pending_suspension.name == "approve"
    assert state.pending_suspension.input_schema == APPROVAL_SCHEMA
    assert state.to_dict()["pendingSuspension"]["kind"] == "interrupt"


# ==============================================================================
# TEST 2: Interrupt validation
# ==============================================================================


@pytest.mark.asyncio
async def test_invalid_input_leaves_operation_untouched(engine):
    state = await engine.start(approval, "draft")
    before = await engine.get_status(state.id)

    with pytest.raises(ResumeMismatch):
        await engine.resume(state.id, "approve", {"approved": "yes"})

    after = await engine.get_status(state.id)
    assert after.status == OperationStatus.SUSPENDED
    assert after.pending_suspension == before.pending_suspension
    assert after.revision == before.revision
    assert after.to_dict() == before.to_dict()


@pytest.mark.asyncio
async def test_valid_input_records_single_step(engine):
    state = await engine.start(approval, "draft")

    state = await engine.resume(state.id, "approve", {"approved": True})

    assert state.status == OperationStatus.SUCCEEDED
    assert state.result == {"summary": "DRAFT", "approved": True}

    operation = await engine.get_status(state.id)
    records = [r for r in operation.cursor if r.step_name == "approve"]
    assert len(records) == 1
    assert records[0].outcome.value is True


@pytest.mark.asyncio
async def test_wrong_name_is_a_mismatch(engine):
    state = await engine.start(approval, "draft")

    with pytest.raises(ResumeMismatch):
        await engine.resume(state.id, "reject", {"approved": True})


@pytest.mark.asyncio
async def test_wrong_kind_is_a_mismatch(engine):
    state = await engine.start(approval, "draft")

    with pytest.raises(ResumeMismatch):
        await engine.resume(state.id, "approve", {"approved": True}, kind=SuspensionKind.SLEEP)


@pytest.mark.asyncio
async def test_resume_of_finished_operation_is_a_mismatch(engine):
    state = await engine.start(approval, "draft")
    await engine.resume(state.id, "approve", {"approved": False})

    with pytest.raises(ResumeMismatch):
        await engine.resume(state.id, "approve", {"approved": True})


# ==============================================================================
# TEST 3: on_resume handling
# ==============================================================================


@pytest.mark.asyncio
async def test_async_on_resume(engine):
    async def normalize(value):
        return value.strip().lower()

    @flow(name="ask-name")
    async def ask_name(_):
        return await interrupt("name", {"type": "string"}, normalize)

    state = await engine.start(ask_name)
    state = await engine.resume(state.id, "name", "  Ada ")

    assert state.result == "ada"


@pytest.mark.asyncio
async def test_on_resume_failure_is_a_step_failure(engine):
    def reject(value):
        raise ValueError(f"cannot accept {value}")

    caught = []

    @flow(name="picky")
    async def picky(_):
        try:
            await interrupt("value", None, reject)
        except StepFailure as e:
            caught.append(e.message)
        return "handled"

    state = await engine.start(picky)
    state = await engine.resume(state.id, "value", 7)

    assert state.result == "handled"
    assert caught == ["cannot accept 7"]


@pytest.mark.asyncio
async def test_interrupt_in_loop_suspends_each_time(engine):
    @flow(name="chat")
    async def chat(_):
        transcript = []
        while True:
            message = await interrupt("message", {"type": "string"})
            if message == "bye":
                return transcript
            transcript.append(message)

    state = await engine.start(chat)
    for message in ["hi", "how are you"]:
        state = await engine.resume(state.id, "message", message)
        assert state.status == OperationStatus.SUSPENDED

    state = await engine.resume(state.id, "message", "bye")

    assert state.status == OperationStatus.SUCCEEDED
    assert state.result == ["hi", "how are you"]
    operation = await engine.get_status(state.id)
    assert [r.occurrence_index for r in operation.cursor] == [0, 1, 2]
