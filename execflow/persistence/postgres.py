"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

import asyncpg

from ..exceptions import PersistenceError, StaleEntityError
from ..models import Execution, StepRecord
from ..states import ExecutionStatus
from .columns import (
    EXECUTION_COLUMNS,
    JSON_COLUMNS,
    RECORD_COLUMNS,
    execution_from_row,
    record_from_row,
    to_row,
)
from .repository import ExecutionRepository

logger = logging.getLogger(__name__)

# Server errors and failures of the connection itself.
DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _placeholder(index: int, column: str) -> str:
    return f"${index}::jsonb" if column in JSON_COLUMNS else f"${index}"


async def _release(conn: asyncpg.Connection) -> None:
    try:
        await conn.close()
    except DRIVER_ERRORS:
        conn.terminate()


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
            if not self._initialized:
                await self._ensure_schema(conn)
                self._initialized = True
        except DRIVER_ERRORS as exc:
            logger.error(f"Could not connect to PostgreSQL: {exc}")
            raise PersistenceError(str(exc)) from exc
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                owner_id TEXT,
                title TEXT,
                status TEXT NOT NULL,
                progress INTEGER NOT NULL DEFAULT 0,
                record_ids JSONB NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                paused_at TIMESTAMPTZ,
                resumed_at TIMESTAMPTZ,
                cancelled_at TIMESTAMPTZ,
                review_notes TEXT,
                reviewed_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_records (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions(id),
                step_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                status TEXT NOT NULL,
                notes TEXT,
                result JSONB,
                skip_reason TEXT,
                failure_reason TEXT,
                review_notes TEXT,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                skipped_at TIMESTAMPTZ,
                failed_at TIMESTAMPTZ,
                reviewed_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_step_records_execution "
            "ON step_records (execution_id, position)"
        )

    # ------------------------------------------------------------------
    @staticmethod
    async def _insert(
        conn: asyncpg.Connection,
        table: str,
        columns: tuple[str, ...],
        model: Execution | StepRecord,
    ) -> None:
        placeholders = ", ".join(
            _placeholder(i, c) for i, c in enumerate(columns, start=1)
        )
        await conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            *to_row(model, columns, iso=False),
        )

    @staticmethod
    async def _update(
        conn: asyncpg.Connection,
        table: str,
        entity: str,
        columns: tuple[str, ...],
        model: Execution | StepRecord,
    ) -> None:
        values = dict(zip(columns, to_row(model, columns, iso=False)))
        updated = [c for c in columns if c != "id"]
        assignments = ", ".join(
            f"{c} = {_placeholder(i, c)}" for i, c in enumerate(updated, start=1)
        )
        n = len(updated)
        status = await conn.execute(
            f"UPDATE {table} SET {assignments} "
            f"WHERE id = ${n + 1} AND version = ${n + 2}",
            *(values[c] for c in updated),
            model.id,
            model.version - 1,
        )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        if status.split()[-1] != "1":
            raise StaleEntityError(entity, model.id, model.version - 1)

    # ------------------------------------------------------------------
    async def create_execution(
        self, execution: Execution, records: Sequence[StepRecord]
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await self._insert(conn, "executions", EXECUTION_COLUMNS, execution)
                for record in records:
                    await self._insert(conn, "step_records", RECORD_COLUMNS, record)
        except DRIVER_ERRORS as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await _release(conn)

    async def get_execution(self, execution_id: str) -> Execution | None:
        row = await self._fetchrow(
            f"SELECT {', '.join(EXECUTION_COLUMNS)} FROM executions WHERE id = $1",
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
        for template, value in (
            ("status = {}", ExecutionStatus(status).value if status else None),
            ("workflow_id = {}", workflow_id),
            ("owner_id = {}", owner_id),
            ("started_at >= {}", started_after),
            ("started_at <= {}", started_before),
            ("strpos(lower(coalesce(title, '')), lower({}::text)) > 0", search),
        ):
            if value is not None:
                params.append(value)
                clauses.append(template.format(f"${len(params)}"))
        if has_review is not None:
            clauses.append(
                "review_notes IS NOT NULL" if has_review else "review_notes IS NULL"
            )
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        page = ""
        if limit is not None:
            params.append(limit)
            page += f" LIMIT ${len(params)}"
        if offset:
            params.append(offset)
            page += f" OFFSET ${len(params)}"
        rows = await self._fetch(
            f"SELECT {', '.join(EXECUTION_COLUMNS)} FROM executions{where} "
            f"ORDER BY created_at DESC, id DESC{page}",
            *params,
        )
        return [execution_from_row(r) for r in rows]

    async def get_record(self, record_id: str) -> StepRecord | None:
        row = await self._fetchrow(
            f"SELECT {', '.join(RECORD_COLUMNS)} FROM step_records WHERE id = $1",
            record_id,
        )
        return record_from_row(row) if row else None

    async def list_records(self, execution_id: str) -> list[StepRecord]:
        rows = await self._fetch(
            f"SELECT {', '.join(RECORD_COLUMNS)} FROM step_records "
            "WHERE execution_id = $1 ORDER BY position",
            execution_id,
        )
        return [record_from_row(r) for r in rows]

    async def commit(
        self,
        execution: Execution | None = None,
        record: StepRecord | None = None,
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                if record is not None:
                    await self._update(
                        conn, "step_records", "StepRecord", RECORD_COLUMNS, record
                    )
                if execution is not None:
                    await self._update(
                        conn, "executions", "Execution", EXECUTION_COLUMNS, execution
                    )
        except DRIVER_ERRORS as exc:
            logger.error(f"PostgreSQL commit failed: {exc}")
            raise PersistenceError(str(exc)) from exc
        finally:
            await _release(conn)

    # ------------------------------------------------------------------
    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        except DRIVER_ERRORS as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await _release(conn)

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        except DRIVER_ERRORS as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await _release(conn)
