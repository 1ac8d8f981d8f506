"""In-memory storage backend for tests and local runs."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime

from quest_server.errors import TaskNotFound
from quest_server.models import CompletionRecord, CompletionWrite, NewTask, Task, TaskPatch


class InMemoryQuestStorage:
    """Dict-backed implementation of the storage contract.

    A single lock serialises writes so id assignment and completion inserts
    behave like their PostgreSQL counterparts under concurrent requests.
    """

    def __init__(self) -> None:
        self._tasks: dict[int, Task] = {}
        self._completions: dict[tuple[int, str], CompletionRecord] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def get_task(self, task_id: int) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def list_tasks_by_quest(self, quest_id: int) -> list[Task]:
        with self._lock:
            matching = [task for task in self._tasks.values() if task.quest_id == quest_id]
        return [task.model_copy(deep=True) for task in sorted(matching, key=lambda t: t.id)]

    def next_task_id(self) -> int:
        with self._lock:
            return self._next_task_id_locked()

    def create_task(self, draft: NewTask) -> Task:
        with self._lock:
            task = draft.with_id(self._next_task_id_locked())
            self._tasks[task.id] = task
        return task.model_copy(deep=True)

    def update_task(self, task_id: int, patch: TaskPatch) -> Task:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFound(task_id)
            updated = patch.apply(current)
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    def has_completion(self, task_id: int, address: str) -> bool:
        return (task_id, address) in self._completions

    def completed_task_ids(self, task_ids: Iterable[int], address: str) -> set[int]:
        wanted = set(task_ids)
        with self._lock:
            return {
                task_id
                for (task_id, record_address) in self._completions
                if record_address == address and task_id in wanted
            }

    def record_completion(self, task_id: int, address: str) -> CompletionWrite:
        key = (task_id, address)
        with self._lock:
            if key in self._completions:
                return "already_recorded"
            self._completions[key] = CompletionRecord(
                task_id=task_id,
                address=address,
                created_at=datetime.now(UTC),
            )
        return "recorded"

    def completion_records(self) -> list[CompletionRecord]:
        """Snapshot of every stored completion record."""
        with self._lock:
            return list(self._completions.values())

    def _next_task_id_locked(self) -> int:
        return max(self._tasks, default=0) + 1
