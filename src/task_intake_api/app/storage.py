"""PostgreSQL storage backend for intake tasks.

Terms:
- Migration: creating the table and indexes before normal reads/writes.
- Row factory: returns query rows as dict-like objects instead of tuples.
- RETURNING: PostgreSQL clause that hands back the written row in one trip.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any, Protocol

from .errors import PersistenceError, TaskNotFoundError
from .models import Task, TaskStatus, TaskType


class TaskStorage(Protocol):
    async def migrate(self) -> None: ...

    async def create_task(self, email: str, task_text: str) -> Task: ...

    async def get_task(self, task_id: int) -> Task | None: ...

    async def list_tasks(self, email: str) -> list[Task]: ...

    async def update_task(
        self,
        task_id: int,
        *,
        status: TaskStatus | None = None,
        result: dict[str, Any] | None = None,
        type: TaskType | None = None,
        clear_result: bool = False,
    ) -> Task: ...

    async def delete_task(self, task_id: int) -> None: ...


class PostgresTaskStorage:
    """Async PostgreSQL-backed storage for Task records."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        # Serializes schema changes; row writes rely on PostgreSQL itself.
        self._migrate_lock = asyncio.Lock()
        # Lazy import helper keeps error message clear if psycopg is missing.
        self._psycopg, self._dict_row = self._load_psycopg()

    async def migrate(self) -> None:
        """Create required table and indexes if they do not already exist."""
        async with self._migrate_lock:
            await self._execute_many(
                [
                    """
                    CREATE TABLE IF NOT EXISTS tasks (
                        id SERIAL PRIMARY KEY,
                        email TEXT NOT NULL,
                        task TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        result TEXT,
                        type TEXT,
                        created_at TIMESTAMPTZ NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL
                    )
                    """,
                    "CREATE INDEX IF NOT EXISTS idx_tasks_email ON tasks(email)",
                    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)",
                ]
            )

    async def create_task(self, email: str, task_text: str) -> Task:
        """Insert a new pending task row and return it."""
        now = datetime.now(tz=UTC)
        row = await self._fetch_one(
            """
            INSERT INTO tasks (email, task, status, result, type, created_at, updated_at)
            VALUES (%s, %s, 'pending', NULL, NULL, %s, %s)
            RETURNING *
            """,
            (email, task_text, now, now),
            commit=True,
        )
        if row is None:
            raise PersistenceError("Task insert returned no row")
        return self._row_to_task(row)

    async def get_task(self, task_id: int) -> Task | None:
        row = await self._fetch_one("SELECT * FROM tasks WHERE id = %s", (task_id,))
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(self, email: str) -> list[Task]:
        rows = await self._fetch_all(
            "SELECT * FROM tasks WHERE email = %s ORDER BY created_at DESC, id DESC",
            (email,),
        )
        return [self._row_to_task(row) for row in rows]

    async def update_task(
        self,
        task_id: int,
        *,
        status: TaskStatus | None = None,
        result: dict[str, Any] | None = None,
        type: TaskType | None = None,
        clear_result: bool = False,
    ) -> Task:
        """Update selected task fields while keeping unspecified fields unchanged.

        ``result=None`` means "keep"; pass ``clear_result=True`` to null it.
        """
        assignments = ["updated_at = %s"]
        params: list[Any] = [datetime.now(tz=UTC)]
        if status is not None:
            assignments.append("status = %s")
            params.append(status)
        if clear_result:
            assignments.append("result = NULL")
        elif result is not None:
            assignments.append("result = %s")
            params.append(json.dumps(result, default=str))
        if type is not None:
            assignments.append("type = %s")
            params.append(type)
        params.append(task_id)

        row = await self._fetch_one(
            f"UPDATE tasks SET {', '.join(assignments)} WHERE id = %s RETURNING *",
            tuple(params),
            commit=True,
        )
        if row is None:
            raise TaskNotFoundError(task_id)
        return self._row_to_task(row)

    async def delete_task(self, task_id: int) -> None:
        row = await self._fetch_one(
            "DELETE FROM tasks WHERE id = %s RETURNING id", (task_id,), commit=True
        )
        if row is None:
            raise TaskNotFoundError(task_id)

    async def _execute_many(self, statements: list[str]) -> None:
        try:
            async with await self._connect() as conn:
                for statement in statements:
                    await conn.execute(statement)
                await conn.commit()
        except self._psycopg.Error as exc:
            raise PersistenceError(f"Database migration failed: {exc}") from exc

    async def _fetch_one(
        self, query: str, params: tuple[Any, ...], *, commit: bool = False
    ) -> Any:
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(query, params)
                row = await cursor.fetchone()
                if commit:
                    await conn.commit()
                return row
        except self._psycopg.Error as exc:
            raise PersistenceError(f"Database operation failed: {exc}") from exc

    async def _fetch_all(self, query: str, params: tuple[Any, ...]) -> list[Any]:
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(query, params)
                return list(await cursor.fetchall())
        except self._psycopg.Error as exc:
            raise PersistenceError(f"Database operation failed: {exc}") from exc

    async def _connect(self) -> Any:
        """Open an async psycopg connection that yields dict-like rows."""
        return await self._psycopg.AsyncConnection.connect(
            self.database_url, row_factory=self._dict_row
        )

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg and helpers with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        """Parse datetime value from database driver output."""
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> Task:
        """Map one DB row to the canonical Task Pydantic model."""
        return Task(
            id=int(row["id"]),
            email=row["email"],
            task=row["task"],
            status=row["status"],
            result=row["result"],
            type=row["type"],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
