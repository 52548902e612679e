"""SQLite database connection and schema management."""

import aiosqlite
from pathlib import Path
from typing import Optional
import json
import logging

logger = logging.getLogger(__name__)


# SQL schema for workflow runs. Step state, inputs and outputs live in JSON
# columns so a run is always written with a single statement.
RUNS_SCHEMA = """
CREATE TABLE IF NOT EXISTS workflow_runs (
    id TEXT PRIMARY KEY,
    definition_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    inputs TEXT DEFAULT '{}',
    state TEXT DEFAULT '{}',
    frontier TEXT DEFAULT '[]',
    credits_used REAL NOT NULL DEFAULT 0,
    credits_reserved REAL NOT NULL DEFAULT 0,
    budget REAL,
    outputs TEXT DEFAULT '{}',
    error TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_workflow_runs_status ON workflow_runs(status);
CREATE INDEX IF NOT EXISTS idx_workflow_runs_owner ON workflow_runs(owner_id, created_at);
"""

# SQL schema for human tasks
TASKS_SCHEMA = """
CREATE TABLE IF NOT EXISTS workflow_tasks (
    id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    step_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    task_type TEXT NOT NULL DEFAULT 'approval',
    title TEXT NOT NULL,
    description TEXT,
    prompt TEXT DEFAULT '{}',
    response TEXT,
    created_at TEXT NOT NULL,
    completed_at TEXT,
    FOREIGN KEY (run_id) REFERENCES workflow_runs(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_workflow_tasks_run_step ON workflow_tasks(run_id, step_id);
CREATE INDEX IF NOT EXISTS idx_workflow_tasks_owner_status ON workflow_tasks(owner_id, status);
"""


class Database:
    """
    Async SQLite database connection manager.

    Owns the connection and the schema.
    """

    def __init__(self, db_path: Path | str = "genflow.db"):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Establish database connection and initialize schema."""
        if self._connection is not None:
            return

        # Ensure directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Connecting to database: {self.db_path}")
        self._connection = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode
        )

        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute("PRAGMA journal_mode = WAL")

        await self._init_schema()

        logger.info("Database connected and schema initialized")

    async def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        async with self._connection.executescript(RUNS_SCHEMA):
            pass
        async with self._connection.executescript(TASKS_SCHEMA):
            pass

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        """Get the current connection (raises if not connected)."""
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        return await self.connection.execute(sql, params)

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        """Fetch a single row as a dictionary."""
        self.connection.row_factory = aiosqlite.Row
        async with self.connection.execute(sql, params) as cursor:
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        """Fetch all rows as dictionaries."""
        self.connection.row_factory = aiosqlite.Row
        async with self.connection.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


# Utility functions for JSON serialization in SQLite

def serialize_json(data) -> str:
    """Serialize data to JSON string for storage."""
    return json.dumps(data, default=str)


def deserialize_json(data: Optional[str], default=None):
    """Deserialize JSON string from storage."""
    if data is None:
        return default
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        return default
