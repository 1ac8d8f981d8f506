"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from quest_server.errors import StoreUnavailable, TaskNotFound
from quest_server.models import CompletionWrite, NewTask, Task, TaskPatch

logger = logging.getLogger(__name__)

# Column order for inserts and selects; "desc" is a reserved word and stays quoted.
TASK_COLUMNS = (
    "id",
    "quest_id",
    "name",
    "desc",
    "cta",
    "href",
    "verify_endpoint",
    "verify_endpoint_type",
    "verify_redirect",
    "task_type",
    "discord_guild_id",
    "quiz_name",
)
_SELECT_TASK_COLUMNS = ", ".join(f'"{column}"' for column in TASK_COLUMNS)


class PostgresQuestStorage:
    """Persist task definitions and completion records in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("QUEST_SERVER_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY,
                    quest_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    "desc" TEXT NOT NULL DEFAULT '',
                    cta TEXT NOT NULL DEFAULT '',
                    href TEXT NOT NULL DEFAULT '',
                    verify_endpoint TEXT NOT NULL DEFAULT '',
                    verify_endpoint_type TEXT NOT NULL,
                    verify_redirect TEXT,
                    task_type TEXT,
                    discord_guild_id TEXT,
                    quiz_name TEXT
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_quest_id
                ON tasks(quest_id, id)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS completed_tasks (
                    task_id INTEGER NOT NULL,
                    address TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    PRIMARY KEY (task_id, address)
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_completed_tasks_address
                ON completed_tasks(address)
                """)
            conn.commit()

    def get_task(self, task_id: int) -> Task | None:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {_SELECT_TASK_COLUMNS} FROM tasks WHERE id = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks_by_quest(self, quest_id: int) -> list[Task]:
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT {_SELECT_TASK_COLUMNS} FROM tasks WHERE quest_id = %s ORDER BY id ASC",
                (quest_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def next_task_id(self) -> int:
        with self._session() as conn:
            return self._select_next_id(conn)

    def create_task(self, draft: NewTask) -> Task:
        with self._session() as conn:
            # Readers stay unblocked; a second creator waits until this commit.
            conn.execute("LOCK TABLE tasks IN SHARE ROW EXCLUSIVE MODE")
            task = draft.with_id(self._select_next_id(conn))
            placeholders = ", ".join(["%s"] * len(TASK_COLUMNS))
            conn.execute(
                f"INSERT INTO tasks ({_SELECT_TASK_COLUMNS}) VALUES ({placeholders})",
                tuple(getattr(task, column) for column in TASK_COLUMNS),
            )
            conn.commit()
        return task

    def update_task(self, task_id: int, patch: TaskPatch) -> Task:
        changes = patch.changes()
        assignments = ", ".join(f'"{column}" = %s' for column in changes)
        with self._session() as conn:
            # Row lock holds until commit so the type-specific check sees the final row.
            row = conn.execute(
                f"SELECT {_SELECT_TASK_COLUMNS} FROM tasks WHERE id = %s FOR UPDATE",
                (task_id,),
            ).fetchone()
            if row is None:
                raise TaskNotFound(task_id)
            current = self._row_to_task(row)
            patch.apply(current)
            if not changes:
                return current
            row = conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = %s RETURNING {_SELECT_TASK_COLUMNS}",
                (*changes.values(), task_id),
            ).fetchone()
            conn.commit()
        return self._row_to_task(row)

    def has_completion(self, task_id: int, address: str) -> bool:
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT EXISTS (
                    SELECT 1 FROM completed_tasks WHERE task_id = %s AND address = %s
                ) AS present
                """,
                (task_id, address),
            ).fetchone()
        return bool(row and row.get("present"))

    def completed_task_ids(self, task_ids: Iterable[int], address: str) -> set[int]:
        ids = sorted(set(task_ids))
        if not ids:
            return set()
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT task_id
                FROM completed_tasks
                WHERE address = %s AND task_id = ANY(%s)
                """,
                (address, ids),
            ).fetchall()
        return {int(row["task_id"]) for row in rows}

    def record_completion(self, task_id: int, address: str) -> CompletionWrite:
        with self._session() as conn:
            row = conn.execute(
                """
                INSERT INTO completed_tasks (task_id, address, created_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (task_id, address) DO NOTHING
                RETURNING task_id
                """,
                (task_id, address, datetime.now(tz=UTC)),
            ).fetchone()
            conn.commit()
        return "recorded" if row is not None else "already_recorded"

    @contextmanager
    def _session(self) -> Iterator[Any]:
        """Serialise access through this instance and map driver errors."""
        with self._lock:
            try:
                with self._connect() as conn:
                    yield conn
            except self._psycopg.Error as exc:
                logger.error("storage event=driver_error error_type=%s", type(exc).__name__)
                raise StoreUnavailable("document store request failed") from exc

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _select_next_id(conn: Any) -> int:
        row = conn.execute("SELECT COALESCE(MAX(id), 0) + 1 AS next_id FROM tasks").fetchone()
        return int(row["next_id"]) if row else 1

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _row_to_task(row: Any) -> Task:
        return Task.model_validate({column: row.get(column) for column in TASK_COLUMNS})
