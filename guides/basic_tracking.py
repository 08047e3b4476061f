"""Example walking one execution from creation to completion."""

import asyncio

from execflow import (
    ExecutionTracker,
    InMemoryWorkflowCatalog,
    PrecompletionError,
    StepDefinition,
    WorkflowDefinition,
)
from execflow.persistence import InMemoryExecutionRepository


async def main():
    catalog = InMemoryWorkflowCatalog(
        [
            WorkflowDefinition(
                id="onboarding",
                name="Employee onboarding",
                steps=[
                    StepDefinition(id="collect-docs", name="Collect documents", order=1),
                    StepDefinition(id="sign-contract", name="Sign contract", order=2),
                    StepDefinition(id="setup-laptop", name="Set up laptop", order=3),
                ],
            )
        ]
    )
    tracker = ExecutionTracker(InMemoryExecutionRepository(), catalog)

    execution = await tracker.executions.create("onboarding", title="New hire: Ada")
    await tracker.executions.start(execution.id)
    docs, contract, laptop = await tracker.executions.list_records(execution.id)

    await tracker.records.start(docs.id)
    await tracker.records.complete(docs.id, notes="passport scanned", result={"pages": 2})
    await tracker.records.start(contract.id)
    await tracker.records.skip(contract.id, "signed during interview")

    try:
        await tracker.executions.complete(execution.id)
    except PrecompletionError as exc:
        print(f"Not done yet: {exc.pending_count} step(s) open")

    await tracker.records.start(laptop.id)
    await tracker.records.fail(laptop.id, "no stock")

    execution = await tracker.executions.complete(execution.id)
    print(f"{execution.title}: {execution.status.value} at {execution.progress}%")


if __name__ == "__main__":
    asyncio.run(main())
