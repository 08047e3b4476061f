import asyncio
import re

from typer.testing import CliRunner

import execflow.persistence as persistence
import execflow.workflows as workflows
from execflow import StepStatus
from execflow.cli import app
from execflow.persistence import InMemoryExecutionRepository
from execflow.workflows import InMemoryWorkflowCatalog

runner = CliRunner()


def _setup(catalog) -> InMemoryExecutionRepository:
    repo = InMemoryExecutionRepository()
    persistence._repository_instance = repo
    workflows._catalog_instance = catalog
    return repo


def _invoke(*args: str):
    result = runner.invoke(app, list(args))
    assert (
        result.exit_code == 0
    ), f"Command {args} failed with exit code {result.exit_code}. Output: {result.stdout}"
    return result.stdout


def _create(workflow_id: str = "onboarding") -> str:
    output = _invoke("execution", "create", workflow_id, "--owner", "u1")
    match = re.search(r"Created execution (\S+)", output)
    assert match, f"No execution id in output: {output}"
    return match.group(1)


def test_workflow_list(catalog):
    _setup(catalog)
    output = _invoke("workflow", "list")
    assert "onboarding\tEmployee onboarding\t3 step(s)" in output
    assert "empty" in output

    workflows._catalog_instance = InMemoryWorkflowCatalog()
    assert "No workflows found" in _invoke("workflow", "list")


def test_create_show_and_list(catalog):
    _setup(catalog)
    assert "No executions found" in _invoke("execution", "list")

    execution_id = _create()
    output = _invoke("execution", "show", execution_id)
    assert f"Execution {execution_id}: PENDING (0%)" in output
    assert "Title: Employee onboarding" in output
    assert "[0] collect-docs" in output
    assert "[2] setup-laptop" in output

    listed = _invoke("execution", "list", "--status", "PENDING")
    assert execution_id in listed
    assert execution_id not in _invoke("execution", "list", "--status", "PAUSED")


def test_step_commands_update_progress(catalog):
    repo = _setup(catalog)
    execution_id = _create()
    _invoke("execution", "start", execution_id)
    records = asyncio.run(repo.list_records(execution_id))

    _invoke("step", "start", records[0].id)
    output = _invoke(
        "step", "complete", records[0].id, "--notes", "done", "--result", '{"ok": true}'
    )
    assert "COMPLETED" in output
    assert "notes: done" in output

    _invoke("step", "start", records[1].id)
    assert "skipped: not needed" in _invoke(
        "step", "skip", records[1].id, "--reason", "not needed"
    )

    assert "(66%)" in _invoke("execution", "show", execution_id)
    stored = asyncio.run(repo.get_record(records[0].id))
    assert stored.status == StepStatus.COMPLETED
    assert stored.result == {"ok": True}


def test_errors_exit_with_code(catalog):
    repo = _setup(catalog)
    execution_id = _create()
    _invoke("execution", "start", execution_id)

    result = runner.invoke(app, ["execution", "complete", execution_id])
    assert result.exit_code == 1
    assert "precompletion" in result.stdout

    record_id = asyncio.run(repo.list_records(execution_id))[0].id
    result = runner.invoke(app, ["step", "complete", record_id])
    assert result.exit_code == 1
    assert "invalid_transition" in result.stdout

    result = runner.invoke(app, ["execution", "show", "missing"])
    assert result.exit_code == 1
    assert "not_found" in result.stdout


def test_invalid_result_json(catalog):
    repo = _setup(catalog)
    execution_id = _create()
    record_id = asyncio.run(repo.list_records(execution_id))[0].id
    _invoke("step", "start", record_id)

    result = runner.invoke(app, ["step", "complete", record_id, "--result", "{oops"])

    assert result.exit_code == 1
    assert "Invalid JSON" in result.stdout
    stored = asyncio.run(repo.get_record(record_id))
    assert stored.status == StepStatus.IN_PROGRESS


def test_lifecycle_review_and_stats(catalog):
    _setup(catalog)
    execution_id = _create("empty")

    assert "PAUSED" in _invoke("execution", "pause", execution_id)
    assert "IN_PROGRESS" in _invoke("execution", "resume", execution_id)
    assert "COMPLETED (0%)" in _invoke("execution", "complete", execution_id)
    _invoke("execution", "review", execution_id, "smooth run")
    assert "Review: smooth run" in _invoke("execution", "show", execution_id)

    cancelled_id = _create("empty")
    assert "CANCELLED" in _invoke("execution", "cancel", cancelled_id)

    output = _invoke("execution", "stats", "--owner", "u1")
    assert "Total: 2" in output
    assert "Completed: 1" in output
    assert "Completion rate: 50.0%" in output
    assert "CANCELLED: 1" in output


def test_step_review_and_attachments(catalog):
    repo = _setup(catalog)
    execution_id = _create()
    record_id = asyncio.run(repo.list_records(execution_id))[0].id

    assert "PENDING" in _invoke("step", "review", record_id, "looks fine")
    assert "No attachments" in _invoke("step", "attachments", record_id)
    assert asyncio.run(repo.get_record(record_id)).review_notes == "looks fine"


def test_list_history_filters(catalog):
    _setup(catalog)
    started_id = _create()
    _invoke("execution", "start", started_id)
    reviewed_id = _create("empty")
    _invoke("execution", "review", reviewed_id, "checked")

    output = _invoke("execution", "list", "--search", "ONBOARD")
    assert started_id in output
    assert reviewed_id not in output
    assert "\tEmployee onboarding" in output

    output = _invoke("execution", "list", "--reviewed")
    assert reviewed_id in output
    assert started_id not in output
    assert reviewed_id not in _invoke("execution", "list", "--unreviewed")

    output = _invoke("execution", "list", "--since", "2000-01-01")
    assert started_id in output
    assert reviewed_id not in output
    assert "No executions found" in _invoke("execution", "list", "--until", "2000-01-01")

    assert len(_invoke("execution", "list", "--limit", "1").splitlines()) == 1
    assert len(_invoke("execution", "list", "--offset", "1").splitlines()) == 1

    result = runner.invoke(
        app, ["execution", "list", "--since", "2030-01-01", "--until", "2020-01-01"]
    )
    assert result.exit_code == 1
    assert "validation_error" in result.stdout
