"""Wiring of the execution and step record managers."""

from __future__ import annotations

from typing import Optional

from .attachments import AttachmentStore, InMemoryAttachmentStore
from .config import ExecflowConfig, load_config
from .executions import ExecutionManager
from .locks import KeyedLocks
from .persistence import ExecutionRepository, get_repository
from .records import StepRecordManager
from .workflows import WorkflowCatalog, get_catalog


class ExecutionTracker:
    """Entry point exposing both managers over shared storage and locks."""

    def __init__(
        self,
        repository: ExecutionRepository,
        catalog: WorkflowCatalog,
        attachments: Optional[AttachmentStore] = None,
        lock_timeout: Optional[float] = 5.0,
    ) -> None:
        self.repository = repository
        self.locks = KeyedLocks(timeout=lock_timeout)
        self.executions = ExecutionManager(repository, catalog, locks=self.locks)
        self.records = StepRecordManager(
            repository,
            self.executions,
            attachments=attachments or InMemoryAttachmentStore(),
            locks=self.locks,
        )


def get_tracker(config: Optional[ExecflowConfig] = None) -> ExecutionTracker:
    """Build a tracker from configuration.

    Storage and workflow definitions come from :func:`get_repository` and
    :func:`get_catalog`, so an explicitly installed repository or catalog is
    picked up as well.
    """
    repository = get_repository(config=config)
    catalog = get_catalog(config)
    config = config or load_config()
    return ExecutionTracker(
        repository=repository,
        catalog=catalog,
        lock_timeout=config.lock_timeout,
    )
