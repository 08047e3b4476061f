"""Typed errors raised by the execution and step record managers.

Every error derives from :class:`ExecflowError` and carries a stable ``code``
so that whatever transport fronts the managers can map it without string
matching. All of them except :class:`PersistenceError` are recoverable from
the caller's point of view; the core never retries on its own.
"""

from __future__ import annotations

from typing import Optional, Sequence


class ExecflowError(Exception):
    """Base class for all execflow errors."""

    code = "execflow_error"


class NotFoundError(ExecflowError):
    """Referenced execution, step record or workflow does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(ExecflowError):
    """Requested transition is not legal from the current status."""

    code = "invalid_transition"

    def __init__(self, entity: str, entity_id: str, current: str, target: str):
        super().__init__(
            f"Cannot move {entity} {entity_id} from {current} to {target}"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target


class ValidationError(ExecflowError):
    """Required input is missing or malformed."""

    code = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class PrecompletionError(ExecflowError):
    """An execution was completed while some of its records are not terminal."""

    code = "precompletion"

    def __init__(self, execution_id: str, pending_ids: Sequence[str]):
        self.execution_id = execution_id
        self.pending_ids = list(pending_ids)
        super().__init__(
            f"Execution {execution_id} still has {self.pending_count} "
            "non-terminal step record(s)"
        )

    @property
    def pending_count(self) -> int:
        return len(self.pending_ids)


class ExecutionClosedError(ExecflowError):
    """A step record was mutated after its execution was completed or cancelled."""

    code = "execution_closed"

    def __init__(self, execution_id: str, status: str):
        super().__init__(f"Execution {execution_id} is {status}")
        self.execution_id = execution_id
        self.status = status


class ConcurrentModificationError(ExecflowError):
    """Another writer changed the entity between our read and our write."""

    code = "concurrent_modification"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} was modified concurrently")
        self.entity = entity
        self.entity_id = entity_id


class LockTimeoutError(ExecflowError):
    """The lock guarding an entity could not be acquired in time."""

    code = "lock_timeout"

    def __init__(self, key: str, timeout: Optional[float]):
        super().__init__(f"Timed out after {timeout}s waiting for lock {key}")
        self.key = key
        self.timeout = timeout


class PersistenceError(ExecflowError):
    """The storage backend failed while applying a validated transition.

    Backends roll back before raising, so the stored state equals the state
    before the call. Callers may retry.
    """

    code = "persistence_error"


class StaleEntityError(ExecflowError):
    """Raised by repositories when a compare-and-swap on ``version`` fails."""

    code = "stale_entity"

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        super().__init__(
            f"{entity} {entity_id} is no longer at version {expected_version}"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
