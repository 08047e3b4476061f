"""Workflow definition lookup used to materialize step records."""

from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional, Protocol

import yaml
from pydantic import BaseModel, Field

from .config import ExecflowConfig, load_config


class StepDefinition(BaseModel):
    """One step of a workflow definition."""

    id: str
    name: str
    order: int = 0
    description: Optional[str] = None


class WorkflowDefinition(BaseModel):
    """A named, ordered list of steps."""

    id: str
    name: str
    description: Optional[str] = None
    steps: List[StepDefinition] = Field(default_factory=list)

    def ordered_steps(self) -> List[StepDefinition]:
        return sorted(self.steps, key=lambda step: step.order)


class WorkflowCatalog(Protocol):
    """Protocol for workflow definition sources."""

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        """Return the workflow definition or ``None`` if unknown."""

    async def list_workflows(self) -> list[WorkflowDefinition]:
        """Return all known workflow definitions."""


class InMemoryWorkflowCatalog(WorkflowCatalog):
    """Serve workflow definitions from a dictionary."""

    def __init__(self, workflows: Iterable[WorkflowDefinition] = ()) -> None:
        self._workflows: Dict[str, WorkflowDefinition] = {}
        for workflow in workflows:
            self.add(workflow)

    @classmethod
    def from_yaml(cls, path: str | os.PathLike) -> "InMemoryWorkflowCatalog":
        """Load definitions from a YAML file with a top-level ``workflows`` list.

        Steps without an explicit ``order`` keep their position in the file.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        workflows = []
        for raw in data.get("workflows", []):
            steps = [
                {"order": index, **step}
                for index, step in enumerate(raw.get("steps") or [])
            ]
            workflows.append(WorkflowDefinition(**{**raw, "steps": steps}))
        return cls(workflows)

    def add(self, workflow: WorkflowDefinition) -> None:
        self._workflows[workflow.id] = workflow

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        return self._workflows.get(workflow_id)

    async def list_workflows(self) -> list[WorkflowDefinition]:
        return list(self._workflows.values())


_catalog_instance: WorkflowCatalog | None = None


def get_catalog(config: Optional[ExecflowConfig] = None) -> WorkflowCatalog:
    """Return the configured workflow catalog.

    Definitions are read from ``workflows_path`` when configured, otherwise an
    empty in-memory catalog is used.
    """
    global _catalog_instance
    if _catalog_instance is not None and config is None:
        return _catalog_instance

    config = config or load_config()
    if config.workflows_path:
        _catalog_instance = InMemoryWorkflowCatalog.from_yaml(config.workflows_path)
    else:
        _catalog_instance = InMemoryWorkflowCatalog()
    return _catalog_instance
