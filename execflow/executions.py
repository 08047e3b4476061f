"""Execution lifecycle management and progress aggregation."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from . import progress
from .exceptions import (
    ConcurrentModificationError,
    ExecutionClosedError,
    InvalidTransitionError,
    NotFoundError,
    PrecompletionError,
    StaleEntityError,
    ValidationError,
)
from .locks import KeyedLocks
from .models import Execution, ExecutionStats, StepRecord, evolve, utcnow
from .persistence import ExecutionRepository
from .states import (
    ExecutionStatus,
    can_transition_execution,
    is_closed_execution,
)
from .workflows import WorkflowCatalog

logger = logging.getLogger(__name__)

ChangeBuilder = Callable[[Execution, datetime], Awaitable[Dict[str, Any]]]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ExecutionManager:
    """Applies lifecycle transitions to executions.

    This is the only writer of an execution's ``status`` and ``progress``.
    Status changes on one execution are serialized through a per-execution
    lock; progress is recomputed from the step records whenever one of them
    changes.
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        catalog: WorkflowCatalog,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._locks = locks or KeyedLocks()
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    async def get(self, execution_id: str) -> Execution:
        execution = await self._repository.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        return execution

    async def list_records(self, execution_id: str) -> list[StepRecord]:
        await self.get(execution_id)
        return await self._repository.list_records(execution_id)

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
        """Execution history, newest first.

        Date bounds apply to ``started_at``; naive bounds are taken as UTC.
        A blank ``search`` matches everything.
        """
        if limit is not None and limit < 0:
            raise ValidationError("limit", "must not be negative")
        if offset < 0:
            raise ValidationError("offset", "must not be negative")
        started_after = _as_utc(started_after)
        started_before = _as_utc(started_before)
        if started_after and started_before and started_after > started_before:
            raise ValidationError("started_after", "must not be after started_before")
        return await self._repository.list_executions(
            status=status,
            workflow_id=workflow_id,
            owner_id=owner_id,
            started_after=started_after,
            started_before=started_before,
            has_review=has_review,
            search=(search or "").strip() or None,
            limit=limit,
            offset=offset,
        )

    async def stats(self, owner_id: Optional[str] = None) -> ExecutionStats:
        executions = await self._repository.list_executions(owner_id=owner_id)
        breakdown = {status.value: 0 for status in ExecutionStatus}
        for execution in executions:
            breakdown[execution.status.value] += 1

        completed = [
            e for e in executions if e.status == ExecutionStatus.COMPLETED
        ]
        durations = [
            e.duration.total_seconds() for e in completed if e.duration is not None
        ]
        total = len(executions)
        return ExecutionStats(
            total_executions=total,
            completed_executions=len(completed),
            status_breakdown=breakdown,
            completion_rate=(100 * len(completed) / total) if total else 0.0,
            average_duration_seconds=(
                sum(durations) / len(durations) if durations else None
            ),
        )

    # ------------------------------------------------------------------
    # Creation
    async def create(
        self,
        workflow_id: str,
        owner_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Execution:
        """Instantiate a workflow: one PENDING record per step, in step order."""
        workflow = await self._catalog.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)

        now = self._clock()
        execution_id = str(uuid.uuid4())
        records = [
            StepRecord(
                id=str(uuid.uuid4()),
                execution_id=execution_id,
                step_id=step.id,
                position=position,
                created_at=now,
                updated_at=now,
            )
            for position, step in enumerate(workflow.ordered_steps())
        ]
        execution = Execution(
            id=execution_id,
            workflow_id=workflow_id,
            owner_id=owner_id,
            title=title or workflow.name,
            record_ids=[r.id for r in records],
            created_at=now,
            updated_at=now,
        )
        await self._repository.create_execution(execution, records)
        logger.info(
            f"Created execution {execution_id} of workflow {workflow_id} "
            f"with {len(records)} step(s)"
        )
        return execution

    # ------------------------------------------------------------------
    # Lifecycle transitions
    async def start(self, execution_id: str) -> Execution:
        async def changes(execution: Execution, now: datetime) -> Dict[str, Any]:
            return {"started_at": now}

        return await self._transition(
            execution_id,
            ExecutionStatus.IN_PROGRESS,
            changes,
            allowed_from={ExecutionStatus.PENDING},
        )

    async def pause(self, execution_id: str) -> Execution:
        # PENDING executions may be paused as well.
        async def changes(execution: Execution, now: datetime) -> Dict[str, Any]:
            return {"paused_at": now}

        return await self._transition(execution_id, ExecutionStatus.PAUSED, changes)

    async def resume(self, execution_id: str) -> Execution:
        async def changes(execution: Execution, now: datetime) -> Dict[str, Any]:
            return {"resumed_at": now, "started_at": execution.started_at or now}

        return await self._transition(
            execution_id,
            ExecutionStatus.IN_PROGRESS,
            changes,
            allowed_from={ExecutionStatus.PAUSED},
        )

    async def complete(self, execution_id: str) -> Execution:
        async def changes(execution: Execution, now: datetime) -> Dict[str, Any]:
            records = await self._repository.list_records(execution_id)
            snapshot = progress.compute(records)
            if not snapshot.all_terminal:
                raise PrecompletionError(execution_id, snapshot.pending_ids)
            return {"completed_at": now, "progress": snapshot.progress}

        return await self._transition(execution_id, ExecutionStatus.COMPLETED, changes)

    async def cancel(self, execution_id: str) -> Execution:
        async def changes(execution: Execution, now: datetime) -> Dict[str, Any]:
            return {"cancelled_at": now}

        return await self._transition(execution_id, ExecutionStatus.CANCELLED, changes)

    async def review(self, execution_id: str, notes: str) -> Execution:
        """Attach review notes. Allowed in every status."""
        async with self._locks.hold(KeyedLocks.execution_key(execution_id)):
            execution = await self.get(execution_id)
            now = self._clock()
            updated = evolve(
                execution,
                review_notes=notes,
                reviewed_at=now,
                updated_at=now,
                version=execution.version + 1,
            )
            try:
                await self._repository.commit(execution=updated)
            except StaleEntityError:
                raise ConcurrentModificationError("Execution", execution_id) from None
            return updated

    # ------------------------------------------------------------------
    # Progress
    async def on_record_changed(
        self, execution_id: str, record: StepRecord | None = None
    ) -> Execution:
        """Recompute and persist the progress of an execution.

        ``record`` is a staged, not yet persisted, new version of one of the
        execution's records. It is committed in the same write as the new
        progress, so no reader ever sees one without the other. Without a
        record this only re-syncs ``progress`` with the stored records and
        is safe to call any number of times. Never changes ``status``.

        Raises:
            ExecutionClosedError: ``record`` belongs to a completed or
                cancelled execution.
            StaleEntityError: Another process wrote the record or the
                execution since they were read.
        """
        async with self._locks.hold(KeyedLocks.execution_key(execution_id)):
            execution = await self.get(execution_id)
            if record is not None and is_closed_execution(execution.status):
                raise ExecutionClosedError(execution_id, execution.status.value)

            records = await self._repository.list_records(execution_id)
            if record is not None:
                records = [record if r.id == record.id else r for r in records]
            snapshot = progress.compute(records)

            if record is None and snapshot.progress == execution.progress:
                return execution

            updated = evolve(
                execution,
                progress=snapshot.progress,
                updated_at=self._clock(),
                version=execution.version + 1,
            )
            await self._repository.commit(execution=updated, record=record)
            if snapshot.progress != execution.progress:
                logger.info(
                    f"Execution {execution_id} progress "
                    f"{execution.progress}% -> {snapshot.progress}%"
                )
            return updated

    # ------------------------------------------------------------------
    async def _transition(
        self,
        execution_id: str,
        target: ExecutionStatus,
        build: ChangeBuilder,
        allowed_from: Optional[set[ExecutionStatus]] = None,
    ) -> Execution:
        async with self._locks.hold(KeyedLocks.execution_key(execution_id)):
            execution = await self.get(execution_id)
            self._check(execution, target, allowed_from)
            now = self._clock()
            changes = await build(execution, now)
            updated = evolve(
                execution,
                status=target,
                updated_at=now,
                version=execution.version + 1,
                **changes,
            )
            try:
                await self._repository.commit(execution=updated)
            except StaleEntityError:
                logger.warning(
                    f"Execution {execution_id} changed while moving to {target.value}"
                )
                current = await self.get(execution_id)
                self._check(current, target, allowed_from)
                raise ConcurrentModificationError("Execution", execution_id) from None

            logger.info(
                f"Execution {execution_id}: {execution.status.value} -> {target.value}"
            )
            return updated

    @staticmethod
    def _check(
        execution: Execution,
        target: ExecutionStatus,
        allowed_from: Optional[set[ExecutionStatus]],
    ) -> None:
        legal = can_transition_execution(execution.status, target)
        if allowed_from is not None:
            legal = legal and execution.status in allowed_from
        if not legal:
            raise InvalidTransitionError(
                "Execution", execution.id, execution.status.value, target.value
            )
