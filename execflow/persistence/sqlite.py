"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, TypeVar

from ..exceptions import PersistenceError, StaleEntityError
from ..models import Execution, StepRecord
from ..states import ExecutionStatus
from .columns import (
    EXECUTION_COLUMNS,
    RECORD_COLUMNS,
    execution_from_row,
    record_from_row,
    to_row,
    to_timestamp,
)
from .repository import ExecutionRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution state using SQLite."""

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        self.db_path = str(db_path)
        # Autocommit mode; multi-statement writes open their own transaction.
        # ``timeout`` bounds how long a write waits for other connections.
        self._conn = sqlite3.connect(
            self.db_path,
            timeout=timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                owner_id TEXT,
                title TEXT,
                status TEXT NOT NULL,
                progress INTEGER NOT NULL DEFAULT 0,
                record_ids TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                paused_at TEXT,
                resumed_at TEXT,
                cancelled_at TEXT,
                review_notes TEXT,
                reviewed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_records (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions(id),
                step_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                status TEXT NOT NULL,
                notes TEXT,
                result TEXT,
                skip_reason TEXT,
                failure_reason TEXT,
                review_notes TEXT,
                started_at TEXT,
                completed_at TEXT,
                skipped_at TEXT,
                failed_at TEXT,
                reviewed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_step_records_execution "
            "ON step_records (execution_id, position)"
        )

    # ------------------------------------------------------------------
    # Helper methods
    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.error(f"SQLite operation failed on {self.db_path}: {exc}")
            raise PersistenceError(str(exc)) from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _transaction(self, work: Callable[[sqlite3.Cursor], None]) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                work(cur)
                cur.execute("COMMIT")
            except BaseException:
                # A failed COMMIT (e.g. SQLITE_BUSY) leaves the transaction open.
                if self._conn.in_transaction:
                    cur.execute("ROLLBACK")
                raise

    @staticmethod
    def _insert(cur: sqlite3.Cursor, table: str, columns: tuple[str, ...], row: list) -> None:
        placeholders = ", ".join("?" for _ in columns)
        cur.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            row,
        )

    @staticmethod
    def _update(
        cur: sqlite3.Cursor,
        table: str,
        entity: str,
        columns: tuple[str, ...],
        model: Execution | StepRecord,
    ) -> None:
        values = dict(zip(columns, to_row(model, columns, iso=True)))
        assignments = ", ".join(f"{c} = ?" for c in columns if c != "id")
        params = [values[c] for c in columns if c != "id"]
        cur.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ? AND version = ?",
            (*params, model.id, model.version - 1),
        )
        if cur.rowcount != 1:
            raise StaleEntityError(entity, model.id, model.version - 1)

    # ------------------------------------------------------------------
    # Repository API
    async def create_execution(
        self, execution: Execution, records: Sequence[StepRecord]
    ) -> None:
        def work(cur: sqlite3.Cursor) -> None:
            self._insert(
                cur,
                "executions",
                EXECUTION_COLUMNS,
                to_row(execution, EXECUTION_COLUMNS, iso=True),
            )
            for record in records:
                self._insert(
                    cur,
                    "step_records",
                    RECORD_COLUMNS,
                    to_row(record, RECORD_COLUMNS, iso=True),
                )

        await self._run(self._transaction, work)

    async def get_execution(self, execution_id: str) -> Execution | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {', '.join(EXECUTION_COLUMNS)} FROM executions WHERE id = ?",
            execution_id,
        )
        return execution_from_row(row) if row else None

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
        clauses = []
        params: list[Any] = []
        for clause, value in (
            ("status = ?", ExecutionStatus(status).value if status else None),
            ("workflow_id = ?", workflow_id),
            ("owner_id = ?", owner_id),
            ("started_at >= ?", to_timestamp(started_after) if started_after else None),
            ("started_at <= ?", to_timestamp(started_before) if started_before else None),
            ("instr(lower(coalesce(title, '')), lower(?)) > 0", search),
        ):
            if value is not None:
                clauses.append(clause)
                params.append(value)
        if has_review is not None:
            clauses.append(
                "review_notes IS NOT NULL" if has_review else "review_notes IS NULL"
            )
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        page = ""
        if limit is not None or offset:
            # SQLite needs a LIMIT for OFFSET; -1 means no limit.
            page = " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, offset])
        rows = await self._run(
            self._fetchall,
            f"SELECT {', '.join(EXECUTION_COLUMNS)} FROM executions{where} "
            f"ORDER BY created_at DESC, id DESC{page}",
            *params,
        )
        return [execution_from_row(row) for row in rows]

    async def get_record(self, record_id: str) -> StepRecord | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {', '.join(RECORD_COLUMNS)} FROM step_records WHERE id = ?",
            record_id,
        )
        return record_from_row(row) if row else None

    async def list_records(self, execution_id: str) -> list[StepRecord]:
        rows = await self._run(
            self._fetchall,
            f"SELECT {', '.join(RECORD_COLUMNS)} FROM step_records "
            "WHERE execution_id = ? ORDER BY position",
            execution_id,
        )
        return [record_from_row(row) for row in rows]

    async def commit(
        self,
        execution: Execution | None = None,
        record: StepRecord | None = None,
    ) -> None:
        def work(cur: sqlite3.Cursor) -> None:
            if record is not None:
                self._update(cur, "step_records", "StepRecord", RECORD_COLUMNS, record)
            if execution is not None:
                self._update(cur, "executions", "Execution", EXECUTION_COLUMNS, execution)

        await self._run(self._transaction, work)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
