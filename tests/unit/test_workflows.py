import pytest

from execflow import ExecutionTracker
from execflow.config import ExecflowConfig
from execflow.workflows import InMemoryWorkflowCatalog, get_catalog

WORKFLOWS_YAML = """
workflows:
  - id: release
    name: Release checklist
    description: Ship a new version
    steps:
      - id: changelog
        name: Write changelog
      - id: tag
        name: Tag release
        order: 10
      - id: build
        name: Build artifacts
"""


@pytest.fixture
def workflows_file(tmp_path):
    path = tmp_path / "workflows.yaml"
    path.write_text(WORKFLOWS_YAML)
    return path


@pytest.mark.asyncio
async def test_from_yaml_keeps_file_order_unless_given(workflows_file):
    catalog = InMemoryWorkflowCatalog.from_yaml(workflows_file)

    workflow = await catalog.get_workflow("release")

    assert workflow.name == "Release checklist"
    assert [s.id for s in workflow.ordered_steps()] == ["changelog", "build", "tag"]
    assert await catalog.get_workflow("missing") is None


@pytest.mark.asyncio
async def test_empty_yaml_gives_empty_catalog(tmp_path):
    path = tmp_path / "workflows.yaml"
    path.write_text("")
    catalog = InMemoryWorkflowCatalog.from_yaml(path)
    assert await catalog.list_workflows() == []


@pytest.mark.asyncio
async def test_records_follow_step_order(workflows_file, repository):
    catalog = InMemoryWorkflowCatalog.from_yaml(workflows_file)
    tracker = ExecutionTracker(repository, catalog)

    execution = await tracker.executions.create("release")
    records = await tracker.executions.list_records(execution.id)

    assert [r.step_id for r in records] == ["changelog", "build", "tag"]


def test_get_catalog_reads_configured_file(workflows_file):
    catalog = get_catalog(ExecflowConfig(workflows_path=str(workflows_file)))
    assert isinstance(catalog, InMemoryWorkflowCatalog)
    assert get_catalog() is catalog
