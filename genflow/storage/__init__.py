"""Storage layer for genflow."""

from .base import WorkflowStore
from .database import Database
from .memory import InMemoryWorkflowStore
from .run_store import RunStore
from .sqlite_store import SQLiteWorkflowStore
from .task_store import TaskStore

__all__ = [
    "WorkflowStore",
    "Database",
    "InMemoryWorkflowStore",
    "RunStore",
    "SQLiteWorkflowStore",
    "TaskStore",
]
