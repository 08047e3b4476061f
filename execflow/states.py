"""Status enums and the transition tables for executions and step records."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class ExecutionStatus(str, Enum):
    """Lifecycle status of an execution."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    """Lifecycle status of a single step record."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.IN_PROGRESS: frozenset(
        {StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED}
    ),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
    StepStatus.FAILED: frozenset(),
}

EXECUTION_TRANSITIONS: Dict[ExecutionStatus, FrozenSet[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset(
        {
            ExecutionStatus.IN_PROGRESS,
            ExecutionStatus.PAUSED,
            ExecutionStatus.CANCELLED,
        }
    ),
    ExecutionStatus.IN_PROGRESS: frozenset(
        {
            ExecutionStatus.PAUSED,
            ExecutionStatus.COMPLETED,
            ExecutionStatus.CANCELLED,
        }
    ),
    ExecutionStatus.PAUSED: frozenset(
        {ExecutionStatus.IN_PROGRESS, ExecutionStatus.CANCELLED}
    ),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.CANCELLED: frozenset(),
}

TERMINAL_STEP_STATUSES = frozenset(
    {StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED}
)
# SKIPPED counts toward progress, FAILED only toward "all terminal".
RESOLVED_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})
CLOSED_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.CANCELLED}
)


def can_transition_step(current: StepStatus, target: StepStatus) -> bool:
    return target in STEP_TRANSITIONS[current]


def can_transition_execution(
    current: ExecutionStatus, target: ExecutionStatus
) -> bool:
    return target in EXECUTION_TRANSITIONS[current]


def is_terminal_step(status: StepStatus) -> bool:
    return status in TERMINAL_STEP_STATUSES


def is_closed_execution(status: ExecutionStatus) -> bool:
    return status in CLOSED_EXECUTION_STATUSES
