"""In-memory implementation of the execution repository."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Sequence

from ..exceptions import PersistenceError, StaleEntityError
from ..models import Execution, StepRecord
from ..states import ExecutionStatus
from .repository import ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored entities are copied on the way
    in and out, so callers never share instances with the store.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, Execution] = {}
        self._records: Dict[str, StepRecord] = {}

    # ------------------------------------------------------------------
    async def create_execution(
        self, execution: Execution, records: Sequence[StepRecord]
    ) -> None:
        if execution.id in self._executions:
            raise PersistenceError(f"Execution {execution.id} already exists")
        for record in records:
            if record.id in self._records:
                raise PersistenceError(f"Step record {record.id} already exists")
        self._executions[execution.id] = execution.model_copy(deep=True)
        for record in records:
            self._records[record.id] = record.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(
        self,
        status: Optional[ExecutionStatus] = None,
        workflow_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
        has_review: Optional[bool] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Execution]:
        def matches(execution: Execution) -> bool:
            if status is not None and execution.status != status:
                return False
            if workflow_id is not None and execution.workflow_id != workflow_id:
                return False
            if owner_id is not None and execution.owner_id != owner_id:
                return False
            if started_after is not None or started_before is not None:
                started = execution.started_at
                if started is None:
                    return False
                if started_after is not None and started < started_after:
                    return False
                if started_before is not None and started > started_before:
                    return False
            reviewed = execution.review_notes is not None
            if has_review is not None and reviewed != has_review:
                return False
            title = (execution.title or "").lower()
            if search is not None and search.lower() not in title:
                return False
            return True

        found = [e for e in self._executions.values() if matches(e)]
        found.sort(key=lambda e: (e.created_at, e.id), reverse=True)
        end = None if limit is None else offset + limit
        return [e.model_copy(deep=True) for e in found[offset:end]]

    async def get_record(self, record_id: str) -> StepRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def list_records(self, execution_id: str) -> list[StepRecord]:
        records = [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.execution_id == execution_id
        ]
        records.sort(key=lambda r: r.position)
        return records

    async def commit(
        self,
        execution: Execution | None = None,
        record: StepRecord | None = None,
    ) -> None:
        # Check every version before writing anything; there is no await in
        # between, so no other coroutine can interleave.
        if execution is not None:
            self._check_version(self._executions, "Execution", execution)
        if record is not None:
            self._check_version(self._records, "StepRecord", record)
        if execution is not None:
            self._executions[execution.id] = execution.model_copy(deep=True)
        if record is not None:
            self._records[record.id] = record.model_copy(deep=True)

    @staticmethod
    def _check_version(store: dict, entity: str, new: Execution | StepRecord) -> None:
        current = store.get(new.id)
        if current is None or current.version != new.version - 1:
            raise StaleEntityError(entity, new.id, new.version - 1)
