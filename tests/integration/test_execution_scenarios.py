"""End-to-end runs of an execution against every local storage backend."""

import pytest

from execflow import (
    ExecutionClosedError,
    ExecutionStatus,
    ExecutionTracker,
    InvalidTransitionError,
    PrecompletionError,
    StepStatus,
    compute,
)
from execflow.persistence import InMemoryExecutionRepository, SQLiteExecutionRepository


@pytest.fixture(params=["memory", "sqlite"])
def tracker(request, tmp_path, catalog):
    if request.param == "memory":
        yield ExecutionTracker(InMemoryExecutionRepository(), catalog)
        return
    repo = SQLiteExecutionRepository(tmp_path / "executions.db")
    yield ExecutionTracker(repo, catalog)
    repo.close()


async def _assert_progress_matches_records(tracker, execution_id):
    execution = await tracker.executions.get(execution_id)
    records = await tracker.executions.list_records(execution_id)
    assert execution.progress == compute(records).progress
    return execution


@pytest.mark.asyncio
async def test_full_run(tracker):
    execution = await tracker.executions.create("onboarding")
    await tracker.executions.start(execution.id)
    first, second, third = await tracker.executions.list_records(execution.id)

    await tracker.records.start(first.id)
    await tracker.records.complete(first.id, "ok", {})
    current = await _assert_progress_matches_records(tracker, execution.id)
    assert current.progress == 33

    with pytest.raises(InvalidTransitionError):
        await tracker.records.complete(first.id)

    await tracker.records.start(second.id)
    await tracker.records.skip(second.id, "not applicable")
    current = await _assert_progress_matches_records(tracker, execution.id)
    assert current.progress == 66

    with pytest.raises(PrecompletionError) as exc_info:
        await tracker.executions.complete(execution.id)
    assert exc_info.value.pending_ids == [third.id]

    await tracker.records.start(third.id)
    await tracker.records.fail(third.id, "blocked")
    current = await _assert_progress_matches_records(tracker, execution.id)
    assert current.progress == 66
    records = await tracker.executions.list_records(execution.id)
    assert compute(records).all_terminal

    completed = await tracker.executions.complete(execution.id)
    assert completed.status == ExecutionStatus.COMPLETED
    assert completed.completed_at is not None
    assert completed.progress == 66

    with pytest.raises(ExecutionClosedError):
        await tracker.records.fail(first.id, "too late")
    assert (await tracker.records.get(first.id)).status == StepStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_empty_execution(tracker):
    execution = await tracker.executions.create("empty")
    assert execution.record_ids == []

    cancelled = await tracker.executions.cancel(execution.id)

    assert cancelled.status == ExecutionStatus.CANCELLED
    assert cancelled.progress == 0
    assert (await tracker.executions.get(execution.id)).progress == 0


@pytest.mark.asyncio
async def test_pause_resume_keeps_records(tracker):
    execution = await tracker.executions.create("onboarding")
    await tracker.executions.pause(execution.id)
    first = (await tracker.executions.list_records(execution.id))[0]

    # records may still be worked on while the execution is paused
    await tracker.records.start(first.id)
    await tracker.records.complete(first.id)
    resumed = await tracker.executions.resume(execution.id)

    assert resumed.status == ExecutionStatus.IN_PROGRESS
    assert resumed.progress == 33
    assert resumed.started_at is not None
    assert (await tracker.records.get(first.id)).status == StepStatus.COMPLETED
