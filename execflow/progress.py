"""Completion percentage derived from step record states."""

from __future__ import annotations

from typing import Iterable, NamedTuple, Tuple

from .models import StepRecord
from .states import RESOLVED_STEP_STATUSES, TERMINAL_STEP_STATUSES


class Progress(NamedTuple):
    progress: int
    all_terminal: bool
    resolved: int
    total: int
    pending_ids: Tuple[str, ...]


def compute(records: Iterable[StepRecord]) -> Progress:
    """Map the records of one execution to its progress.

    ``progress`` is ``floor(100 * resolved / total)`` where COMPLETED and
    SKIPPED records are resolved. FAILED records are terminal but not
    resolved. An execution without records has progress 0 and is trivially
    all-terminal.
    """
    total = 0
    resolved = 0
    pending = []
    for record in records:
        total += 1
        if record.status in RESOLVED_STEP_STATUSES:
            resolved += 1
        if record.status not in TERMINAL_STEP_STATUSES:
            pending.append(record.id)

    percent = (100 * resolved) // total if total else 0
    return Progress(
        progress=percent,
        all_terminal=not pending,
        resolved=resolved,
        total=total,
        pending_ids=tuple(pending),
    )
