"""Persistence layer for execflow executions."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import ExecflowConfig, load_config
from .inmemory import InMemoryExecutionRepository
from .repository import ExecutionRepository
from .sqlite import SQLiteExecutionRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresExecutionRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresExecutionRepository = None  # type: ignore

logger = logging.getLogger(__name__)

_repository_instance: ExecutionRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[ExecflowConfig] = None
) -> ExecutionRepository:
    """Return the repository executions and step records are stored in.

    ``database_url`` comes from the argument, ``EXECFLOW_DATABASE_URL``,
    ``DATABASE_URL`` or the config file, in that order:

    - ``sqlite://executions.db`` (relative) or ``sqlite:///var/lib/x.db``
      (absolute) selects :class:`SQLiteExecutionRepository`;
    - ``postgresql://...`` selects :class:`PostgresExecutionRepository`;
    - nothing selects :class:`InMemoryExecutionRepository`. Its state lives
      only as long as the process, so each ``execflow`` CLI invocation starts
      without executions. Configure a database to track executions across
      commands.

    The result is cached and returned again by later calls without arguments,
    so the managers built by :func:`execflow.get_tracker` share one store.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("EXECFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        logger.info("No database configured; executions are kept in memory only")
        _repository_instance = InMemoryExecutionRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteExecutionRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresExecutionRepository is None:
            raise RuntimeError("Postgres support not available")
        _repository_instance = PostgresExecutionRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "ExecutionRepository",
    "SQLiteExecutionRepository",
    "PostgresExecutionRepository",
    "InMemoryExecutionRepository",
    "get_repository",
]
