"""Data models for executions and their step records."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field, JsonValue, model_validator

from .states import ExecutionStatus, StepStatus

ModelT = TypeVar("ModelT", bound=BaseModel)

# Arbitrary JSON supplied with a completed step, validated on assignment.
ResultPayload = Dict[str, JsonValue]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def evolve(model: ModelT, **changes: Any) -> ModelT:
    """Return a validated copy of ``model`` with ``changes`` applied.

    Unlike ``model_copy(update=...)`` this runs the model validators, so a
    transition can never produce an entity that breaks its invariants. The
    original instance is left untouched.
    """
    data = model.model_dump()
    data.update(changes)
    return type(model).model_validate(data)


class StepRecord(BaseModel):
    """State of one step within one execution."""

    id: str
    execution_id: str
    step_id: str
    position: int = Field(ge=0)
    status: StepStatus = StepStatus.PENDING
    notes: Optional[str] = None
    result: Optional[ResultPayload] = None
    skip_reason: Optional[str] = None
    failure_reason: Optional[str] = None
    review_notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    @model_validator(mode="after")
    def _check_status_fields(self) -> "StepRecord":
        status = self.status
        if (status == StepStatus.PENDING) != (self.started_at is None):
            raise ValueError("started_at must be set once the step has started")
        if (status == StepStatus.COMPLETED) != (self.completed_at is not None):
            raise ValueError("completed_at is set only on COMPLETED records")
        if (status == StepStatus.SKIPPED) != (self.skipped_at is not None):
            raise ValueError("skipped_at is set only on SKIPPED records")
        if (status == StepStatus.FAILED) != (self.failed_at is not None):
            raise ValueError("failed_at is set only on FAILED records")
        if status == StepStatus.SKIPPED:
            if not (self.skip_reason and self.skip_reason.strip()):
                raise ValueError("SKIPPED records require a skip_reason")
        elif self.skip_reason is not None:
            raise ValueError("skip_reason is only allowed on SKIPPED records")
        if status == StepStatus.FAILED:
            if not (self.failure_reason and self.failure_reason.strip()):
                raise ValueError("FAILED records require a failure_reason")
        elif self.failure_reason is not None:
            raise ValueError("failure_reason is only allowed on FAILED records")
        return self


class Execution(BaseModel):
    """One instantiated run of a workflow."""

    id: str
    workflow_id: str
    owner_id: Optional[str] = None
    title: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    record_ids: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    @model_validator(mode="after")
    def _check_completion(self) -> "Execution":
        if (self.status == ExecutionStatus.COMPLETED) != (
            self.completed_at is not None
        ):
            raise ValueError("completed_at is set if and only if status is COMPLETED")
        return self

    @property
    def duration(self) -> Optional[timedelta]:
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at


class ExecutionStats(BaseModel):
    """Aggregate figures over a set of executions."""

    total_executions: int = 0
    completed_executions: int = 0
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    completion_rate: float = 0.0
    average_duration_seconds: Optional[float] = None
