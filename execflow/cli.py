"""Command line interface for tracking workflow executions."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Optional, TypeVar

import typer

from execflow import ExecflowError, ExecutionStatus, get_catalog, get_tracker
from execflow.config import load_config
from execflow.models import Execution, StepRecord

T = TypeVar("T")

app = typer.Typer(help="CLI for execflow executions")

# Command groups
execution_app = typer.Typer(help="Commands for managing executions")
step_app = typer.Typer(help="Commands for working through step records")
workflow_app = typer.Typer(help="Commands for inspecting workflow definitions")

app.add_typer(execution_app, name="execution")
app.add_typer(step_app, name="step")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
) -> None:
    """execflow CLI entry point."""
    level = logging.INFO if verbose else load_config().log_level.upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def _run(coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)
    except ExecflowError as exc:
        typer.secho(f"Error ({exc.code}): {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_execution(execution: Execution) -> None:
    typer.echo(
        f"Execution {execution.id}: {execution.status.value} ({execution.progress}%)"
    )


def _echo_record(record: StepRecord) -> None:
    line = f"- [{record.position}] {record.step_id} ({record.id}): {record.status.value}"
    if record.started_at:
        finished = record.completed_at or record.skipped_at or record.failed_at
        line += f" ({record.started_at} -> {finished or '...'})"
    typer.echo(line)
    if record.skip_reason:
        typer.echo(f"    skipped: {record.skip_reason}")
    if record.failure_reason:
        typer.echo(f"    failed: {record.failure_reason}")
    if record.notes:
        typer.echo(f"    notes: {record.notes}")


# ----------------------------------------------------------------------
# Executions
@execution_app.command("create")
def execution_create(
    workflow_id: str,
    title: Optional[str] = typer.Option(None, help="Display title"),
    owner: Optional[str] = typer.Option(None, help="Owner reference"),
) -> None:
    """
    Instantiate a workflow as a new PENDING execution.

    Example:
        execflow execution create onboarding --title "New hire: Ada"
    """
    tracker = get_tracker()
    execution = _run(
        tracker.executions.create(workflow_id, owner_id=owner, title=title)
    )
    typer.echo(f"Created execution {execution.id}")
    typer.echo(f"Steps: {len(execution.record_ids)}")


@execution_app.command("list")
def execution_list(
    status: Optional[ExecutionStatus] = typer.Option(None, help="Filter by status"),
    workflow: Optional[str] = typer.Option(None, help="Filter by workflow id"),
    owner: Optional[str] = typer.Option(None, help="Filter by owner reference"),
    since: Optional[datetime] = typer.Option(None, help="Started at or after (UTC)"),
    until: Optional[datetime] = typer.Option(None, help="Started at or before (UTC)"),
    reviewed: Optional[bool] = typer.Option(
        None, "--reviewed/--unreviewed", help="Only executions with/without review notes"
    ),
    search: Optional[str] = typer.Option(None, help="Substring of the title"),
    limit: Optional[int] = typer.Option(None, min=0, help="Page size"),
    offset: int = typer.Option(0, min=0, help="Executions to skip"),
) -> None:
    """
    List executions with their status and progress, newest first.

    Example:
        execflow execution list --status IN_PROGRESS --since 2026-01-01 --limit 20
        # Output: 4be1...    IN_PROGRESS    66%    onboarding    New hire: Ada
    """
    tracker = get_tracker()
    executions = _run(
        tracker.executions.list_executions(
            status=status,
            workflow_id=workflow,
            owner_id=owner,
            started_after=since,
            started_before=until,
            has_review=reviewed,
            search=search,
            limit=limit,
            offset=offset,
        )
    )
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(
            f"{execution.id}\t{execution.status.value}\t"
            f"{execution.progress}%\t{execution.workflow_id}\t{execution.title or ''}"
        )


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """
    Show an execution and its step records in step order.

    Example:
        execflow execution show 4be1...
        # Output: Execution 4be1...: IN_PROGRESS (33%)
        #         - [0] collect-docs (9a0c...): COMPLETED (... -> ...)
        #         - [1] sign-contract (77d2...): IN_PROGRESS (... -> ...)
    """
    tracker = get_tracker()

    async def load() -> tuple[Execution, list[StepRecord]]:
        execution = await tracker.executions.get(execution_id)
        return execution, await tracker.executions.list_records(execution_id)

    execution, records = _run(load())
    _echo_execution(execution)
    typer.echo(f"Workflow: {execution.workflow_id}")
    if execution.title:
        typer.echo(f"Title: {execution.title}")
    if execution.review_notes:
        typer.echo(f"Review: {execution.review_notes}")
    for record in records:
        _echo_record(record)


def _lifecycle_command(name: str, help_text: str) -> None:
    @execution_app.command(name, help=help_text)
    def command(execution_id: str) -> None:
        tracker = get_tracker()
        operation = getattr(tracker.executions, name)
        _echo_execution(_run(operation(execution_id)))


_lifecycle_command("start", "Start a PENDING execution.")
_lifecycle_command("pause", "Pause a PENDING or IN_PROGRESS execution.")
_lifecycle_command("resume", "Resume a PAUSED execution.")
_lifecycle_command("complete", "Complete an execution whose steps are all finished.")
_lifecycle_command("cancel", "Cancel an execution that is not finished yet.")


@execution_app.command("review")
def execution_review(execution_id: str, notes: str) -> None:
    """Attach review notes to an execution."""
    tracker = get_tracker()
    _echo_execution(_run(tracker.executions.review(execution_id, notes)))


@execution_app.command("stats")
def execution_stats(
    owner: Optional[str] = typer.Option(None, help="Restrict to one owner"),
) -> None:
    """Show totals, status breakdown and average duration."""
    tracker = get_tracker()
    stats = _run(tracker.executions.stats(owner_id=owner))
    typer.echo(f"Total: {stats.total_executions}")
    typer.echo(f"Completed: {stats.completed_executions}")
    typer.echo(f"Completion rate: {stats.completion_rate:.1f}%")
    if stats.average_duration_seconds is not None:
        typer.echo(f"Average duration: {stats.average_duration_seconds:.0f}s")
    for status, count in stats.status_breakdown.items():
        typer.echo(f"  {status}: {count}")


# ----------------------------------------------------------------------
# Step records
@step_app.command("start")
def step_start(record_id: str) -> None:
    """Start a PENDING step record."""
    tracker = get_tracker()
    _echo_record(_run(tracker.records.start(record_id)))


@step_app.command("complete")
def step_complete(
    record_id: str,
    notes: Optional[str] = typer.Option(None, help="Completion notes"),
    result: Optional[str] = typer.Option(None, help="JSON object with the step result"),
) -> None:
    """
    Complete an IN_PROGRESS step record.

    Example:
        execflow step complete 9a0c... --notes "ok" --result '{"signed": true}'
    """
    payload: Any = None
    if result is not None:
        try:
            payload = json.loads(result)
        except json.JSONDecodeError as exc:
            typer.secho(f"Invalid JSON for --result: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
    tracker = get_tracker()
    _echo_record(_run(tracker.records.complete(record_id, notes=notes, result=payload)))


@step_app.command("skip")
def step_skip(record_id: str, reason: str = typer.Option(..., help="Why it was skipped")) -> None:
    """Skip an IN_PROGRESS step record."""
    tracker = get_tracker()
    _echo_record(_run(tracker.records.skip(record_id, reason)))


@step_app.command("fail")
def step_fail(record_id: str, reason: str = typer.Option(..., help="Why it failed")) -> None:
    """Mark an IN_PROGRESS step record as failed."""
    tracker = get_tracker()
    _echo_record(_run(tracker.records.fail(record_id, reason)))


@step_app.command("review")
def step_review(record_id: str, notes: str) -> None:
    """Attach review notes to a step record."""
    tracker = get_tracker()
    _echo_record(_run(tracker.records.review(record_id, notes)))


@step_app.command("attachments")
def step_attachments(record_id: str) -> None:
    """List the attachments of a step record."""
    tracker = get_tracker()
    attachments = _run(tracker.records.attachments(record_id))
    if not attachments:
        typer.echo("No attachments")
        return
    for attachment in attachments:
        typer.echo(
            f"{attachment.id}\t{attachment.name}\t{attachment.type.value}\t"
            f"{attachment.size}\t{attachment.uploaded_at}"
        )


# ----------------------------------------------------------------------
# Workflow definitions
@workflow_app.command("list")
def workflow_list() -> None:
    """List the workflow definitions executions can be created from."""
    catalog = get_catalog()
    workflows = asyncio.run(catalog.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for workflow in workflows:
        typer.echo(f"{workflow.id}\t{workflow.name}\t{len(workflow.steps)} step(s)")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
