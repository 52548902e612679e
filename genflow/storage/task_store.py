"""Human task storage."""

from typing import Any, Optional
from datetime import datetime

from .database import Database, serialize_json, deserialize_json
from ..models import TaskStatus, WorkflowTask


def _parse_datetime(val: Optional[str]) -> Optional[datetime]:
    if val:
        return datetime.fromisoformat(val)
    return None


class TaskStore:
    """Persistent storage for human tasks."""

    def __init__(self, database: Database):
        self.db = database

    async def save(self, task: WorkflowTask) -> None:
        """Save a task (insert or update)."""
        sql = """
        INSERT INTO workflow_tasks (
            id, run_id, step_id, owner_id, status, task_type, title,
            description, prompt, response, created_at, completed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            status = excluded.status,
            title = excluded.title,
            description = excluded.description,
            prompt = excluded.prompt,
            response = excluded.response,
            completed_at = excluded.completed_at
        """

        await self.db.execute(sql, (
            task.id,
            task.run_id,
            task.step_id,
            task.owner_id,
            task.status.value,
            task.task_type,
            task.title,
            task.description,
            serialize_json(task.prompt),
            serialize_json(task.response) if task.response is not None else None,
            task.created_at.isoformat(),
            task.completed_at.isoformat() if task.completed_at else None,
        ))

    async def get(self, task_id: str) -> Optional[WorkflowTask]:
        """Get a task by ID."""
        row = await self.db.fetch_one(
            "SELECT * FROM workflow_tasks WHERE id = ?",
            (task_id,)
        )
        if row:
            return self._row_to_task(row)
        return None

    async def find(self, run_id: str, step_id: str) -> Optional[WorkflowTask]:
        """Get the task created for a step of a run, if any."""
        row = await self.db.fetch_one(
            """
            SELECT * FROM workflow_tasks
            WHERE run_id = ? AND step_id = ?
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (run_id, step_id)
        )
        if row:
            return self._row_to_task(row)
        return None

    async def complete(self, task_id: str, response: Any) -> bool:
        """
        Mark a pending task completed.

        The update only matches a pending row, so of two racing callers
        exactly one sees True.
        """
        cursor = await self.db.execute(
            """
            UPDATE workflow_tasks
            SET status = 'completed', response = ?, completed_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (serialize_json(response), datetime.utcnow().isoformat(), task_id)
        )
        return cursor.rowcount > 0

    async def list_all(
        self,
        owner_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[WorkflowTask]:
        """List tasks, oldest first, with optional filtering."""
        sql = "SELECT * FROM workflow_tasks"
        clauses = []
        params: list = []

        if owner_id:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if status:
            clauses.append("status = ?")
            params.append(TaskStatus(status).value)

        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at ASC"

        rows = await self.db.fetch_all(sql, tuple(params))
        return [self._row_to_task(row) for row in rows]

    def _row_to_task(self, row: dict) -> WorkflowTask:
        """Convert a database row to a WorkflowTask."""
        return WorkflowTask(
            id=row["id"],
            run_id=row["run_id"],
            step_id=row["step_id"],
            owner_id=row["owner_id"],
            status=row["status"],
            task_type=row.get("task_type") or "approval",
            title=row["title"],
            description=row.get("description"),
            prompt=deserialize_json(row.get("prompt"), {}),
            response=deserialize_json(row.get("response")),
            created_at=_parse_datetime(row.get("created_at")) or datetime.utcnow(),
            completed_at=_parse_datetime(row.get("completed_at")),
        )
