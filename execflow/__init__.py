"""execflow: execution tracking for multi-step business workflows."""

from .exceptions import (
    ConcurrentModificationError,
    ExecflowError,
    ExecutionClosedError,
    InvalidTransitionError,
    LockTimeoutError,
    NotFoundError,
    PersistenceError,
    PrecompletionError,
    StaleEntityError,
    ValidationError,
)
from .executions import ExecutionManager
from .models import Execution, ExecutionStats, StepRecord
from .persistence import get_repository
from .progress import Progress, compute
from .records import StepRecordManager
from .states import ExecutionStatus, StepStatus
from .tracker import ExecutionTracker, get_tracker
from .workflows import (
    InMemoryWorkflowCatalog,
    StepDefinition,
    WorkflowDefinition,
    get_catalog,
)

__version__ = "0.1.0"
__all__ = [
    "ConcurrentModificationError",
    "ExecflowError",
    "Execution",
    "ExecutionClosedError",
    "ExecutionManager",
    "ExecutionStats",
    "ExecutionStatus",
    "ExecutionTracker",
    "InMemoryWorkflowCatalog",
    "InvalidTransitionError",
    "LockTimeoutError",
    "NotFoundError",
    "PersistenceError",
    "PrecompletionError",
    "Progress",
    "StaleEntityError",
    "StepDefinition",
    "StepRecord",
    "StepRecordManager",
    "StepStatus",
    "ValidationError",
    "WorkflowDefinition",
    "compute",
    "get_catalog",
    "get_repository",
    "get_tracker",
]
