"""SQLite-backed workflow store."""

from functools import wraps
from pathlib import Path
from typing import Any, Optional
import logging

import aiosqlite

from ..errors import PersistenceError, RunNotFoundError, TaskNotFoundError
from ..models import RunStatus, TaskStatus, WorkflowRun, WorkflowTask
from .base import WorkflowStore
from .database import Database
from .run_store import RunStore
from .task_store import TaskStore

logger = logging.getLogger(__name__)


def _wrap_driver_errors(func):
    """Re-raise aiosqlite errors as PersistenceError."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except aiosqlite.Error as e:
            logger.error(f"Store operation {func.__name__} failed: {e}")
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper


class SQLiteWorkflowStore(WorkflowStore):
    """WorkflowStore on top of the run and task tables."""

    def __init__(self, database: Database | Path | str):
        if not isinstance(database, Database):
            database = Database(database)
        self.db = database
        self.runs = RunStore(database)
        self.tasks = TaskStore(database)

    @_wrap_driver_errors
    async def connect(self) -> None:
        await self.db.connect()

    async def close(self) -> None:
        await self.db.close()

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    @_wrap_driver_errors
    async def load_run(self, run_id: str) -> WorkflowRun:
        run = await self.runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    @_wrap_driver_errors
    async def save_run(self, run: WorkflowRun) -> None:
        await self.runs.save(run)

    @_wrap_driver_errors
    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        owner_id: Optional[str] = None,
    ) -> list[WorkflowRun]:
        return await self.runs.list_all(status=status, owner_id=owner_id)

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    @_wrap_driver_errors
    async def create_task(self, task: WorkflowTask) -> None:
        await self.tasks.save(task)

    @_wrap_driver_errors
    async def load_task(self, task_id: str) -> WorkflowTask:
        task = await self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @_wrap_driver_errors
    async def complete_task(self, task_id: str, response: Any) -> bool:
        return await self.tasks.complete(task_id, response)

    @_wrap_driver_errors
    async def find_task(self, run_id: str, step_id: str) -> Optional[WorkflowTask]:
        return await self.tasks.find(run_id, step_id)

    @_wrap_driver_errors
    async def list_tasks(
        self,
        owner_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[WorkflowTask]:
        return await self.tasks.list_all(owner_id=owner_id, status=status)
