"""Column layout shared by the SQL backends."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from ..models import Execution, StepRecord

EXECUTION_COLUMNS = (
    "id",
    "workflow_id",
    "owner_id",
    "title",
    "status",
    "progress",
    "record_ids",
    "started_at",
    "completed_at",
    "paused_at",
    "resumed_at",
    "cancelled_at",
    "review_notes",
    "reviewed_at",
    "created_at",
    "updated_at",
    "version",
)

RECORD_COLUMNS = (
    "id",
    "execution_id",
    "step_id",
    "position",
    "status",
    "notes",
    "result",
    "skip_reason",
    "failure_reason",
    "review_notes",
    "started_at",
    "completed_at",
    "skipped_at",
    "failed_at",
    "reviewed_at",
    "created_at",
    "updated_at",
    "version",
)

JSON_COLUMNS = frozenset({"record_ids", "result"})


def to_timestamp(value: datetime) -> str:
    """Fixed-width UTC text form of a timestamp.

    SQLite compares and orders timestamps as text, so every stored value and
    every query bound must use the same layout. Naive values are taken as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def to_row(model: Execution | StepRecord, columns: tuple[str, ...], *, iso: bool) -> list[Any]:
    """Flatten a model into column order.

    JSON columns are encoded as text. With ``iso`` timestamps become
    :func:`to_timestamp` strings (SQLite), otherwise they stay ``datetime``
    objects (asyncpg).
    """
    data = model.model_dump()
    values = []
    for column in columns:
        value = data[column]
        if column in JSON_COLUMNS:
            value = json.dumps(value) if value is not None else None
        elif isinstance(value, Enum):
            value = value.value
        elif iso and isinstance(value, datetime):
            value = to_timestamp(value)
        values.append(value)
    return values


def _decode(row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    for column in JSON_COLUMNS.intersection(data):
        if isinstance(data[column], str):
            data[column] = json.loads(data[column])
    return data


def execution_from_row(row: Mapping[str, Any]) -> Execution:
    return Execution.model_validate(_decode(row))


def record_from_row(row: Mapping[str, Any]) -> StepRecord:
    return StepRecord.model_validate(_decode(row))
