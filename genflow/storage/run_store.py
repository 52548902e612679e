"""Workflow run storage."""

from typing import Optional
from datetime import datetime

from .database import Database, serialize_json, deserialize_json
from ..models import RunError, RunStatus, StepState, WorkflowRun


def _parse_datetime(val: Optional[str]) -> Optional[datetime]:
    if val:
        return datetime.fromisoformat(val)
    return None


def _isoformat(val: Optional[datetime]) -> Optional[str]:
    return val.isoformat() if val else None


class RunStore:
    """
    Persistent storage for workflow runs.

    A run is one row; saving it is a single upsert.
    """

    def __init__(self, database: Database):
        self.db = database

    async def save(self, run: WorkflowRun) -> None:
        """Save a run (insert or update)."""
        state_json = serialize_json(
            {step_id: s.model_dump(mode="json") for step_id, s in run.state.items()}
        )
        error_json = serialize_json(run.error.model_dump()) if run.error else None

        sql = """
        INSERT INTO workflow_runs (
            id, definition_id, owner_id, status, inputs, state, frontier,
            credits_used, credits_reserved, budget, outputs, error,
            created_at, started_at, completed_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            status = excluded.status,
            inputs = excluded.inputs,
            state = excluded.state,
            frontier = excluded.frontier,
            credits_used = excluded.credits_used,
            credits_reserved = excluded.credits_reserved,
            budget = excluded.budget,
            outputs = excluded.outputs,
            error = excluded.error,
            started_at = excluded.started_at,
            completed_at = excluded.completed_at,
            updated_at = excluded.updated_at
        """

        await self.db.execute(sql, (
            run.id,
            run.definition_id,
            run.owner_id,
            run.status.value,
            serialize_json(run.inputs),
            state_json,
            serialize_json(run.frontier),
            run.credits_used,
            run.credits_reserved,
            run.budget,
            serialize_json(run.outputs),
            error_json,
            _isoformat(run.created_at),
            _isoformat(run.started_at),
            _isoformat(run.completed_at),
            _isoformat(run.updated_at),
        ))

    async def get(self, run_id: str) -> Optional[WorkflowRun]:
        """Get a run by ID."""
        row = await self.db.fetch_one(
            "SELECT * FROM workflow_runs WHERE id = ?",
            (run_id,)
        )
        if row:
            return self._row_to_run(row)
        return None

    async def delete(self, run_id: str) -> bool:
        """Delete a run (and its tasks). Returns True if deleted."""
        cursor = await self.db.execute(
            "DELETE FROM workflow_runs WHERE id = ?",
            (run_id,)
        )
        return cursor.rowcount > 0

    async def list_all(
        self,
        status: Optional[RunStatus] = None,
        owner_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[WorkflowRun]:
        """List runs, newest first, with optional filtering."""
        sql = "SELECT * FROM workflow_runs"
        clauses = []
        params: list = []

        if status:
            clauses.append("status = ?")
            params.append(RunStatus(status).value)
        if owner_id:
            clauses.append("owner_id = ?")
            params.append(owner_id)

        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        rows = await self.db.fetch_all(sql, tuple(params))
        return [self._row_to_run(row) for row in rows]

    async def list_active(self) -> list[WorkflowRun]:
        """Get all running or paused runs, oldest first."""
        rows = await self.db.fetch_all(
            """
            SELECT * FROM workflow_runs
            WHERE status IN ('running', 'paused')
            ORDER BY created_at ASC
            """
        )
        return [self._row_to_run(row) for row in rows]

    def _row_to_run(self, row: dict) -> WorkflowRun:
        """Convert a database row to a WorkflowRun."""
        state_data = deserialize_json(row.get("state"), {})
        error_data = deserialize_json(row.get("error"))

        return WorkflowRun(
            id=row["id"],
            definition_id=row["definition_id"],
            owner_id=row["owner_id"],
            status=row["status"],
            inputs=deserialize_json(row.get("inputs"), {}),
            state={step_id: StepState(**s) for step_id, s in state_data.items()},
            frontier=deserialize_json(row.get("frontier"), []),
            credits_used=row.get("credits_used") or 0.0,
            credits_reserved=row.get("credits_reserved") or 0.0,
            budget=row.get("budget"),
            outputs=deserialize_json(row.get("outputs"), {}),
            error=RunError(**error_data) if error_data else None,
            created_at=_parse_datetime(row.get("created_at")) or datetime.utcnow(),
            started_at=_parse_datetime(row.get("started_at")),
            completed_at=_parse_datetime(row.get("completed_at")),
            updated_at=_parse_datetime(row.get("updated_at")) or datetime.utcnow(),
        )
