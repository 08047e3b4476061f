"""Step record transitions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .attachments import AttachmentDescriptor, AttachmentStore
from .exceptions import (
    ConcurrentModificationError,
    ExecutionClosedError,
    InvalidTransitionError,
    NotFoundError,
    StaleEntityError,
    ValidationError,
)
from .executions import ExecutionManager
from .locks import KeyedLocks
from .models import ResultPayload, StepRecord, evolve, utcnow
from .persistence import ExecutionRepository
from .states import StepStatus, can_transition_step, is_closed_execution

logger = logging.getLogger(__name__)

_result_adapter = TypeAdapter(ResultPayload)


def _require_reason(field: str, reason: Optional[str]) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError(field, "a non-empty reason is required")
    return reason


def _validate_result(result: Any) -> Optional[ResultPayload]:
    if result is None:
        return None
    try:
        return _result_adapter.validate_python(result)
    except PydanticValidationError as exc:
        raise ValidationError("result", f"must be a JSON object: {exc}") from exc


class StepRecordManager:
    """Applies validated transitions to single step records.

    ``PENDING -> IN_PROGRESS -> COMPLETED | SKIPPED | FAILED``. The three
    terminal states are final. Each successful transition is handed to
    :meth:`ExecutionManager.on_record_changed`, which commits it together
    with the recomputed execution progress.
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        executions: ExecutionManager,
        attachments: Optional[AttachmentStore] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._executions = executions
        self._attachments = attachments
        self._locks = locks or KeyedLocks()
        self._clock = clock

    async def get(self, record_id: str) -> StepRecord:
        record = await self._repository.get_record(record_id)
        if record is None:
            raise NotFoundError("StepRecord", record_id)
        return record

    async def start(self, record_id: str) -> StepRecord:
        return await self._transition(
            record_id, StepStatus.IN_PROGRESS, lambda now: {"started_at": now}
        )

    async def complete(
        self,
        record_id: str,
        notes: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> StepRecord:
        payload = _validate_result(result)
        return await self._transition(
            record_id,
            StepStatus.COMPLETED,
            lambda now: {"completed_at": now, "notes": notes, "result": payload},
        )

    async def skip(self, record_id: str, reason: str) -> StepRecord:
        reason = _require_reason("skip_reason", reason)
        return await self._transition(
            record_id,
            StepStatus.SKIPPED,
            lambda now: {"skipped_at": now, "skip_reason": reason},
        )

    async def fail(self, record_id: str, reason: str) -> StepRecord:
        reason = _require_reason("failure_reason", reason)
        return await self._transition(
            record_id,
            StepStatus.FAILED,
            lambda now: {"failed_at": now, "failure_reason": reason},
        )

    async def review(self, record_id: str, notes: str) -> StepRecord:
        """Attach review notes to a record in any status."""
        async with self._locks.hold(KeyedLocks.record_key(record_id)):
            record = await self.get(record_id)
            now = self._clock()
            updated = evolve(
                record,
                review_notes=notes,
                reviewed_at=now,
                updated_at=now,
                version=record.version + 1,
            )
            try:
                await self._repository.commit(record=updated)
            except StaleEntityError:
                raise ConcurrentModificationError("StepRecord", record_id) from None
            return updated

    async def attachments(self, record_id: str) -> list[AttachmentDescriptor]:
        await self.get(record_id)
        if self._attachments is None:
            return []
        return await self._attachments.list_for_record(record_id)

    # ------------------------------------------------------------------
    async def _transition(
        self,
        record_id: str,
        target: StepStatus,
        changes: Callable[[datetime], Dict[str, Any]],
    ) -> StepRecord:
        async with self._locks.hold(KeyedLocks.record_key(record_id)):
            record = await self.get(record_id)
            await self._check(record, target)

            now = self._clock()
            staged = evolve(
                record,
                status=target,
                updated_at=now,
                version=record.version + 1,
                **changes(now),
            )
            try:
                await self._executions.on_record_changed(record.execution_id, staged)
            except StaleEntityError:
                logger.warning(
                    f"Step record {record_id} changed while moving to {target.value}"
                )
                await self._check(await self.get(record_id), target)
                raise ConcurrentModificationError("StepRecord", record_id) from None

            logger.info(
                f"Step record {record_id} of execution {record.execution_id}: "
                f"{record.status.value} -> {target.value}"
            )
            return staged

    async def _check(self, record: StepRecord, target: StepStatus) -> None:
        execution = await self._executions.get(record.execution_id)
        if is_closed_execution(execution.status):
            raise ExecutionClosedError(execution.id, execution.status.value)
        if not can_transition_step(record.status, target):
            raise InvalidTransitionError(
                "StepRecord", record.id, record.status.value, target.value
            )
