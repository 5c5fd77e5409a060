"""Database infrastructure using SQLite with WAL mode."""

import json
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
from aiosqlite import Connection

from agentpad.domain.models import (
    TERMINAL_RUN_STATUSES,
    RunStatus,
    Scratchpad,
    ScratchpadTask,
    SubagentRun,
    Task,
    TaskStatus,
    utc_now,
)


class Database:
    """SQLite database with WAL mode for concurrent access.

    The record store for tasks, scratchpads, subagent runs and the audit
    log. Callers only use the CRUD accessors below; consistency rules
    (locking, cascades, scratchpad caps) live in the service layer.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file, or ``:memory:``
        """
        self.db_path = db_path
        self._initialized = False
        self._shared_conn: Connection | None = None  # For :memory: databases

    async def initialize(self) -> None:
        """Initialize database schema and settings."""
        if self._initialized:
            return

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._get_connection() as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute("PRAGMA busy_timeout=5000")

            await self._create_tables(conn)
            await conn.commit()

        self._initialized = True

    async def close(self) -> None:
        """Close the database connection.

        Only needed for :memory: databases to clean up the shared connection.
        File-based databases close connections automatically.
        """
        if self._shared_conn is not None:
            await self._shared_conn.close()
            self._shared_conn = None
            self._initialized = False

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[Connection]:
        """Get database connection with proper settings.

        For :memory: databases, maintains a shared connection to preserve data
        across multiple operations. For file databases, creates a new connection
        each time.
        """
        if str(self.db_path) == ":memory:":
            if self._shared_conn is None:
                self._shared_conn = await aiosqlite.connect(":memory:")
                self._shared_conn.row_factory = aiosqlite.Row
                await self._shared_conn.execute("PRAGMA foreign_keys=ON")
            yield self._shared_conn
        else:
            async with aiosqlite.connect(str(self.db_path)) as conn:
                conn.row_factory = aiosqlite.Row
                # SQLite defaults to foreign_keys=OFF on every new connection
                await conn.execute("PRAGMA foreign_keys=ON")
                await conn.execute("PRAGMA busy_timeout=5000")
                yield conn

    async def _create_tables(self, conn: Connection) -> None:
        """Create tables and indexes."""
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                project_id TEXT NOT NULL,
                task_id TEXT NOT NULL,
                task_info TEXT NOT NULL,
                parent_id TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                extra_note TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                PRIMARY KEY (project_id, task_id)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(project_id, parent_id)"
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS scratchpads (
                project_id TEXT NOT NULL,
                scratchpad_id TEXT NOT NULL,
                tasks TEXT NOT NULL DEFAULT '[]',
                common_memory TEXT NOT NULL DEFAULT '',
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                PRIMARY KEY (project_id, scratchpad_id)
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS subagent_runs (
                project_id TEXT NOT NULL,
                run_id TEXT NOT NULL,
                user_id TEXT,
                scratchpad_id TEXT NOT NULL,
                task_id TEXT NOT NULL,
                status TEXT NOT NULL,
                error TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                PRIMARY KEY (project_id, run_id)
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS audit (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TIMESTAMP NOT NULL,
                project_id TEXT NOT NULL,
                run_id TEXT,
                action_type TEXT NOT NULL,
                action_data TEXT,
                result TEXT
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_run ON audit(project_id, run_id)"
        )

    # Task operations
    async def insert_task(self, task: Task) -> bool:
        """Insert a task unless (project_id, task_id) already exists.

        Returns:
            True if inserted, False if a task with that id already existed
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO tasks (
                    project_id, task_id, task_info, parent_id, status,
                    extra_note, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.project_id,
                    task.task_id,
                    task.task_info,
                    task.parent_id,
                    task.status.value,
                    task.extra_note,
                    task.created_at.isoformat(),
                    task.updated_at.isoformat(),
                ),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def get_task(self, project_id: str, task_id: str) -> Task | None:
        """Get task by project and id."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM tasks WHERE project_id = ? AND task_id = ?",
                (project_id, task_id),
            )
            row = await cursor.fetchone()
            if row:
                return self._row_to_task(row)
            return None

    async def list_tasks(
        self, project_id: str, statuses: Iterable[TaskStatus] | None = None
    ) -> list[Task]:
        """List a project's tasks in creation order.

        Args:
            project_id: Project to read
            statuses: Optional status filter

        Returns:
            Tasks ordered by created_at
        """
        query = "SELECT * FROM tasks WHERE project_id = ?"
        params: list[Any] = [project_id]
        if statuses is not None:
            status_values = [TaskStatus(s).value for s in statuses]
            if not status_values:
                return []
            placeholders = ",".join("?" for _ in status_values)
            query += f" AND status IN ({placeholders})"
            params.extend(status_values)
        query += " ORDER BY created_at ASC, rowid ASC"

        async with self._get_connection() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()
            return [self._row_to_task(row) for row in rows]

    async def update_task(self, task: Task) -> None:
        """Persist all mutable fields of a task."""
        async with self._get_connection() as conn:
            await conn.execute(
                """
                UPDATE tasks
                SET task_info = ?, parent_id = ?, status = ?, extra_note = ?, updated_at = ?
                WHERE project_id = ? AND task_id = ?
                """,
                (
                    task.task_info,
                    task.parent_id,
                    task.status.value,
                    task.extra_note,
                    task.updated_at.isoformat(),
                    task.project_id,
                    task.task_id,
                ),
            )
            await conn.commit()

    async def update_task_statuses(
        self, project_id: str, task_ids: list[str], status: TaskStatus, updated_at: datetime
    ) -> None:
        """Set the same status on many tasks in one transaction."""
        if not task_ids:
            return
        async with self._get_connection() as conn:
            await conn.executemany(
                """
                UPDATE tasks SET status = ?, updated_at = ?
                WHERE project_id = ? AND task_id = ?
                """,
                [(status.value, updated_at.isoformat(), project_id, tid) for tid in task_ids],
            )
            await conn.commit()

    async def delete_project_tasks(self, project_id: str) -> int:
        """Delete every task of a project.

        Returns:
            Number of tasks deleted
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))
            await conn.commit()
            return cursor.rowcount

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        """Convert database row to Task model."""
        row_dict = dict(row)
        return Task(
            project_id=row_dict["project_id"],
            task_id=row_dict["task_id"],
            task_info=row_dict["task_info"],
            parent_id=row_dict["parent_id"],
            status=TaskStatus(row_dict["status"]),
            extra_note=row_dict["extra_note"],
            created_at=datetime.fromisoformat(row_dict["created_at"]),
            updated_at=datetime.fromisoformat(row_dict["updated_at"]),
        )

    # Scratchpad operations
    async def insert_scratchpad(self, scratchpad: Scratchpad) -> bool:
        """Insert a scratchpad unless the id is taken.

        Returns:
            True if inserted, False if the id already existed
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO scratchpads (
                    project_id, scratchpad_id, tasks, common_memory, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    scratchpad.project_id,
                    scratchpad.scratchpad_id,
                    self._dump_scratchpad_tasks(scratchpad.tasks),
                    scratchpad.common_memory,
                    scratchpad.created_at.isoformat(),
                    scratchpad.updated_at.isoformat(),
                ),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def scratchpad_exists(self, project_id: str, scratchpad_id: str) -> bool:
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM scratchpads WHERE project_id = ? AND scratchpad_id = ?",
                (project_id, scratchpad_id),
            )
            return await cursor.fetchone() is not None

    async def get_scratchpad(self, project_id: str, scratchpad_id: str) -> Scratchpad | None:
        """Get scratchpad by project and id."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM scratchpads WHERE project_id = ? AND scratchpad_id = ?",
                (project_id, scratchpad_id),
            )
            row = await cursor.fetchone()
            if row:
                return self._row_to_scratchpad(row)
            return None

    async def update_scratchpad(self, scratchpad: Scratchpad) -> None:
        """Persist a scratchpad's task list and common memory."""
        async with self._get_connection() as conn:
            await conn.execute(
                """
                UPDATE scratchpads SET tasks = ?, common_memory = ?, updated_at = ?
                WHERE project_id = ? AND scratchpad_id = ?
                """,
                (
                    self._dump_scratchpad_tasks(scratchpad.tasks),
                    scratchpad.common_memory,
                    scratchpad.updated_at.isoformat(),
                    scratchpad.project_id,
                    scratchpad.scratchpad_id,
                ),
            )
            await conn.commit()

    def _dump_scratchpad_tasks(self, tasks: list[ScratchpadTask]) -> str:
        return json.dumps([task.model_dump(mode="json") for task in tasks])

    def _row_to_scratchpad(self, row: aiosqlite.Row) -> Scratchpad:
        """Convert database row to Scratchpad model."""
        row_dict = dict(row)
        return Scratchpad(
            project_id=row_dict["project_id"],
            scratchpad_id=row_dict["scratchpad_id"],
            tasks=[ScratchpadTask(**item) for item in json.loads(row_dict["tasks"] or "[]")],
            common_memory=row_dict["common_memory"] or "",
            created_at=datetime.fromisoformat(row_dict["created_at"]),
            updated_at=datetime.fromisoformat(row_dict["updated_at"]),
        )

    # Subagent run operations
    async def insert_subagent_run(self, run: SubagentRun) -> None:
        """Insert a new run record."""
        async with self._get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO subagent_runs (
                    project_id, run_id, user_id, scratchpad_id, task_id,
                    status, error, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.project_id,
                    run.run_id,
                    run.user_id,
                    run.scratchpad_id,
                    run.task_id,
                    run.status.value,
                    run.error,
                    run.created_at.isoformat(),
                    run.updated_at.isoformat(),
                ),
            )
            await conn.commit()

    async def update_subagent_run_status(
        self,
        project_id: str,
        run_id: str,
        status: RunStatus,
        error: str | None = None,
    ) -> bool:
        """Move a run to a new status.

        Terminal runs are never modified.

        Returns:
            True if the record changed, False if it was missing or terminal
        """
        terminal = tuple(s.value for s in TERMINAL_RUN_STATUSES)
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"""
                UPDATE subagent_runs SET status = ?, error = ?, updated_at = ?
                WHERE project_id = ? AND run_id = ?
                  AND status NOT IN ({",".join("?" for _ in terminal)})
                """,
                (
                    status.value,
                    error,
                    utc_now().isoformat(),
                    project_id,
                    run_id,
                    *terminal,
                ),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def get_subagent_run(self, project_id: str, run_id: str) -> SubagentRun | None:
        """Get run record by project and id."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM subagent_runs WHERE project_id = ? AND run_id = ?",
                (project_id, run_id),
            )
            row = await cursor.fetchone()
            if row:
                return self._row_to_subagent_run(row)
            return None

    def _row_to_subagent_run(self, row: aiosqlite.Row) -> SubagentRun:
        row_dict = dict(row)
        return SubagentRun(
            project_id=row_dict["project_id"],
            run_id=row_dict["run_id"],
            user_id=row_dict["user_id"],
            scratchpad_id=row_dict["scratchpad_id"],
            task_id=row_dict["task_id"],
            status=RunStatus(row_dict["status"]),
            error=row_dict["error"],
            created_at=datetime.fromisoformat(row_dict["created_at"]),
            updated_at=datetime.fromisoformat(row_dict["updated_at"]),
        )

    # Audit operations
    async def log_audit(
        self,
        project_id: str,
        action_type: str,
        run_id: str | None = None,
        action_data: dict[str, Any] | None = None,
        result: str | None = None,
    ) -> None:
        """Log an audit entry."""
        async with self._get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO audit (timestamp, project_id, run_id, action_type, action_data, result)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    utc_now().isoformat(),
                    project_id,
                    run_id,
                    action_type,
                    json.dumps(action_data) if action_data else None,
                    result,
                ),
            )
            await conn.commit()

    async def list_audit(self, project_id: str, run_id: str | None = None) -> list[dict[str, Any]]:
        """Read audit entries for a project (optionally one run), oldest first."""
        query = "SELECT * FROM audit WHERE project_id = ?"
        params: list[Any] = [project_id]
        if run_id is not None:
            query += " AND run_id = ?"
            params.append(run_id)
        query += " ORDER BY id ASC"
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()
            entries = []
            for row in rows:
                entry = dict(row)
                entry["action_data"] = (
                    json.loads(entry["action_data"]) if entry["action_data"] else None
                )
                entries.append(entry)
            return entries
