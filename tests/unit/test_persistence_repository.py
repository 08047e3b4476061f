import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from execflow import (
    ExecutionStatus,
    ExecutionTracker,
    PersistenceError,
    StaleEntityError,
    StepStatus,
)
from execflow.models import Execution, StepRecord, evolve
from execflow.persistence import InMemoryExecutionRepository, SQLiteExecutionRepository

NOW = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)


def _execution(execution_id: str, created_at: datetime = NOW, **fields) -> tuple:
    records = [
        StepRecord(
            id=f"{execution_id}-r{i}",
            execution_id=execution_id,
            step_id=f"step{i}",
            position=i,
            created_at=created_at,
            updated_at=created_at,
        )
        for i in range(2)
    ]
    execution = Execution(
        id=execution_id,
        workflow_id=fields.pop("workflow_id", "wf"),
        record_ids=[r.id for r in records],
        created_at=created_at,
        updated_at=created_at,
        **fields,
    )
    return execution, records


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryExecutionRepository()
        return
    repository = SQLiteExecutionRepository(tmp_path / "executions.db")
    yield repository
    repository.close()


@pytest.mark.asyncio
async def test_repository_crud(repo):
    execution, records = _execution("e1", owner_id="u1", title="First")
    await repo.create_execution(execution, records)

    stored = await repo.get_execution("e1")
    assert stored == execution
    assert await repo.list_records("e1") == records
    assert await repo.get_record("e1-r0") == records[0]
    assert await repo.get_execution("missing") is None
    assert await repo.get_record("missing") is None
    assert await repo.list_records("missing") == []

    started = evolve(
        records[0],
        status=StepStatus.IN_PROGRESS,
        started_at=NOW,
        version=2,
    )
    done = evolve(
        started,
        status=StepStatus.COMPLETED,
        completed_at=NOW,
        result={"signed": True, "pages": [1, 2]},
        notes="ok",
        version=3,
    )
    await repo.commit(record=started)
    await repo.commit(
        execution=evolve(execution, progress=50, version=2), record=done
    )

    assert await repo.get_record("e1-r0") == done
    assert (await repo.get_execution("e1")).progress == 50


@pytest.mark.asyncio
async def test_repository_returns_copies(repo):
    execution, records = _execution("e1")
    await repo.create_execution(execution, records)

    fetched = await repo.get_execution("e1")
    fetched.record_ids.append("bogus")

    assert (await repo.get_execution("e1")).record_ids == ["e1-r0", "e1-r1"]


@pytest.mark.asyncio
async def test_list_executions_filters_newest_first(repo):
    for index, (status, owner) in enumerate(
        [
            (ExecutionStatus.PENDING, "u1"),
            (ExecutionStatus.PAUSED, "u2"),
            (ExecutionStatus.PENDING, "u2"),
        ]
    ):
        execution, records = _execution(
            f"e{index}",
            created_at=NOW + timedelta(minutes=index),
            status=status,
            owner_id=owner,
            paused_at=NOW if status == ExecutionStatus.PAUSED else None,
        )
        await repo.create_execution(execution, records)

    assert [e.id for e in await repo.list_executions()] == ["e2", "e1", "e0"]
    assert [
        e.id for e in await repo.list_executions(status=ExecutionStatus.PENDING)
    ] == ["e2", "e0"]
    assert [e.id for e in await repo.list_executions(owner_id="u2")] == ["e2", "e1"]
    assert await repo.list_executions(workflow_id="other") == []


@pytest.mark.asyncio
async def test_stale_version_is_rejected(repo):
    execution, records = _execution("e1")
    await repo.create_execution(execution, records)
    await repo.commit(execution=evolve(execution, progress=10, version=2))

    with pytest.raises(StaleEntityError) as exc_info:
        await repo.commit(execution=evolve(execution, progress=20, version=2))
    assert exc_info.value.expected_version == 1
    assert (await repo.get_execution("e1")).progress == 10


@pytest.mark.asyncio
async def test_commit_is_atomic(repo):
    execution, records = _execution("e1")
    await repo.create_execution(execution, records)
    await repo.commit(execution=evolve(execution, progress=10, version=2))

    started = evolve(
        records[0], status=StepStatus.IN_PROGRESS, started_at=NOW, version=2
    )
    # record is current, execution is stale
    with pytest.raises(StaleEntityError):
        await repo.commit(
            execution=evolve(execution, progress=50, version=2), record=started
        )

    assert await repo.get_record("e1-r0") == records[0]
    assert (await repo.get_execution("e1")).progress == 10


@pytest.mark.asyncio
async def test_duplicate_execution_is_rejected(repo):
    execution, records = _execution("e1")
    await repo.create_execution(execution, records)

    with pytest.raises(PersistenceError):
        await repo.create_execution(execution, records)


@pytest.mark.asyncio
async def test_sqlite_repository_survives_reopen(tmp_path):
    db_path = tmp_path / "executions.db"
    repo = SQLiteExecutionRepository(db_path)
    execution, records = _execution("e1", title="Persisted")
    await repo.create_execution(execution, records)
    repo.close()

    reopened = SQLiteExecutionRepository(db_path)
    try:
        assert await reopened.get_execution("e1") == execution
        assert await reopened.list_records("e1") == records
    finally:
        reopened.close()


@pytest.mark.asyncio
async def test_list_executions_history_filters(repo):
    berlin = timezone(timedelta(hours=1))
    fixtures = [
        # (id, created_at, started_at, title, review_notes)
        ("e0", NOW, None, "Laptop setup", None),
        ("e1", NOW + timedelta(minutes=10), NOW + timedelta(minutes=10), "Onboarding Alice", "fine"),
        ("e2", NOW + timedelta(minutes=20), NOW + timedelta(minutes=20), "onboarding bob", None),
        # 12:30 UTC written with a +01:00 offset
        ("e3", datetime(2026, 2, 1, 13, 30, tzinfo=berlin), NOW + timedelta(minutes=30), None, "late"),
    ]
    for execution_id, created_at, started_at, title, notes in fixtures:
        execution, records = _execution(
            execution_id,
            created_at=created_at,
            status=ExecutionStatus.IN_PROGRESS if started_at else ExecutionStatus.PENDING,
            started_at=started_at,
            title=title,
            review_notes=notes,
            reviewed_at=created_at if notes else None,
        )
        await repo.create_execution(execution, records)

    async def ids(**filters):
        return [e.id for e in await repo.list_executions(**filters)]

    assert await ids() == ["e3", "e2", "e1", "e0"]
    # bounds are inclusive and never match executions that have not started
    assert await ids(started_after=NOW + timedelta(minutes=10)) == ["e3", "e2", "e1"]
    assert await ids(started_before=NOW + timedelta(minutes=20)) == ["e2", "e1"]
    assert await ids(
        started_after=NOW + timedelta(minutes=15),
        started_before=NOW + timedelta(minutes=25),
    ) == ["e2"]
    assert await ids(started_before=NOW - timedelta(days=1)) == []

    assert await ids(has_review=True) == ["e3", "e1"]
    assert await ids(has_review=False) == ["e2", "e0"]
    assert await ids(search="ONBOARDING") == ["e2", "e1"]
    assert await ids(search="onboarding", has_review=False) == ["e2"]
    assert await ids(search="nothing like it") == []

    assert await ids(limit=2) == ["e3", "e2"]
    assert await ids(limit=2, offset=2) == ["e1", "e0"]
    assert await ids(offset=3) == ["e0"]
    assert await ids(limit=0) == []


@pytest.mark.asyncio
async def test_list_executions_orders_sub_second_timestamps(repo):
    for execution_id, created_at in [
        ("whole", NOW + timedelta(seconds=1)),
        ("fraction", NOW + timedelta(milliseconds=500)),
        ("earliest", NOW),
    ]:
        execution, records = _execution(execution_id, created_at=created_at)
        await repo.create_execution(execution, records)

    assert [e.id for e in await repo.list_executions()] == ["whole", "fraction", "earliest"]


@pytest.mark.asyncio
async def test_sqlite_rolls_back_when_commit_is_blocked(tmp_path, catalog):
    db_path = tmp_path / "executions.db"
    repo = SQLiteExecutionRepository(db_path, timeout=0.05)
    tracker = ExecutionTracker(repo, catalog)
    execution = await tracker.executions.create("onboarding")
    record_id = execution.record_ids[0]

    # an open read transaction keeps COMMIT from taking its exclusive lock
    reader = sqlite3.connect(str(db_path), isolation_level=None)
    try:
        reader.execute("BEGIN")
        reader.execute("SELECT * FROM step_records").fetchall()

        with pytest.raises(PersistenceError):
            await tracker.records.start(record_id)

        assert not repo._conn.in_transaction
        assert (await repo.get_record(record_id)).status == StepStatus.PENDING
        assert (await repo.get_execution(execution.id)).version == execution.version
        reader.execute("ROLLBACK")
    finally:
        reader.close()

    started = await tracker.records.start(record_id)
    assert started.status == StepStatus.IN_PROGRESS
    assert (await repo.get_record(record_id)).status == StepStatus.IN_PROGRESS
    repo.close()
