"""Repository abstraction for execution state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..models import Execution, StepRecord
from ..states import ExecutionStatus


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends.

    Writes go through :meth:`commit`, which applies a compare-and-swap on the
    ``version`` field of every entity it is given: the stored copy must be at
    ``entity.version - 1``. Either every entity is written or none is.
    """

    async def create_execution(
        self, execution: Execution, records: Sequence[StepRecord]
    ) -> None:
        """Persist a new execution together with its step records."""

    async def get_execution(self, execution_id: str) -> Execution | None:
        """Retrieve an execution by id."""

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
        """Return executions matching every given filter, newest first.

        ``started_after``/``started_before`` bound ``started_at`` inclusively
        and exclude executions that never started. ``has_review`` selects on
        the presence of review notes, ``search`` is a case-insensitive
        substring match on the title. ``limit``/``offset`` page through the
        ordered result.
        """

    async def get_record(self, record_id: str) -> StepRecord | None:
        """Retrieve a step record by id."""

    async def list_records(self, execution_id: str) -> list[StepRecord]:
        """Return the step records of an execution in step order."""

    async def commit(
        self,
        execution: Execution | None = None,
        record: StepRecord | None = None,
    ) -> None:
        """Atomically persist new versions of an execution and/or a record.

        Raises:
            StaleEntityError: A stored entity is not at ``version - 1``.
            PersistenceError: The backend failed; nothing was written.
        """
