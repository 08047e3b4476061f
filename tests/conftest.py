import pytest

import execflow.persistence as persistence
import execflow.workflows as workflows
from execflow import ExecutionTracker, StepDefinition, WorkflowDefinition
from execflow.persistence import InMemoryExecutionRepository
from execflow.workflows import InMemoryWorkflowCatalog


def make_catalog() -> InMemoryWorkflowCatalog:
    return InMemoryWorkflowCatalog(
        [
            WorkflowDefinition(
                id="onboarding",
                name="Employee onboarding",
                steps=[
                    # declared out of order; `order` decides position
                    StepDefinition(id="sign-contract", name="Sign contract", order=2),
                    StepDefinition(id="collect-docs", name="Collect documents", order=1),
                    StepDefinition(id="setup-laptop", name="Set up laptop", order=3),
                ],
            ),
            WorkflowDefinition(id="empty", name="No steps"),
        ]
    )


@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch, tmp_path):
    monkeypatch.delenv("EXECFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("EXECFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    persistence._repository_instance = None
    workflows._catalog_instance = None
    yield
    persistence._repository_instance = None
    workflows._catalog_instance = None


@pytest.fixture
def catalog() -> InMemoryWorkflowCatalog:
    return make_catalog()


@pytest.fixture
def repository() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def tracker(repository, catalog) -> ExecutionTracker:
    return ExecutionTracker(repository, catalog)
