"""In-memory workflow store for tests and single-process use."""

import asyncio
from typing import Any, Optional

from ..errors import RunNotFoundError, TaskNotFoundError
from ..models import RunStatus, TaskStatus, WorkflowRun, WorkflowTask
from .base import WorkflowStore


class InMemoryWorkflowStore(WorkflowStore):
    """
    Dict-backed store.

    Records are copied on the way in and out, so callers never share state
    with the store (the same as reloading from a database).
    """

    def __init__(self):
        self._runs: dict[str, WorkflowRun] = {}
        self._tasks: dict[str, WorkflowTask] = {}
        self._lock = asyncio.Lock()

    async def load_run(self, run_id: str) -> WorkflowRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run.model_copy(deep=True)

    async def save_run(self, run: WorkflowRun) -> None:
        self._runs[run.id] = run.model_copy(deep=True)

    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        owner_id: Optional[str] = None,
    ) -> list[WorkflowRun]:
        runs = [
            r for r in self._runs.values()
            if (status is None or r.status == status)
            and (owner_id is None or r.owner_id == owner_id)
        ]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs]

    async def create_task(self, task: WorkflowTask) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def load_task(self, task_id: str) -> WorkflowTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task.model_copy(deep=True)

    async def complete_task(self, task_id: str, response: Any) -> bool:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None or not task.is_pending:
                return False
            task.complete(response)
            return True

    async def find_task(self, run_id: str, step_id: str) -> Optional[WorkflowTask]:
        for task in self._tasks.values():
            if task.run_id == run_id and task.step_id == step_id:
                return task.model_copy(deep=True)
        return None

    async def list_tasks(
        self,
        owner_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[WorkflowTask]:
        tasks = [
            t for t in self._tasks.values()
            if (owner_id is None or t.owner_id == owner_id)
            and (status is None or t.status == status)
        ]
        tasks.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in tasks]
