"""Storage interface for task definitions and completion records."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from quest_server.models import CompletionWrite, NewTask, Task, TaskPatch


class QuestStorage(Protocol):
    """Repository contract consumed by the verifier, aggregator and admin mutator.

    Implementations raise `StoreUnavailable` for infrastructure failures and
    never report them as missing data.
    """

    def migrate(self) -> None: ...

    def get_task(self, task_id: int) -> Task | None: ...

    def list_tasks_by_quest(self, quest_id: int) -> list[Task]: ...

    def next_task_id(self) -> int: ...

    def create_task(self, draft: NewTask) -> Task: ...

    def update_task(self, task_id: int, patch: TaskPatch) -> Task: ...

    def has_completion(self, task_id: int, address: str) -> bool: ...

    def completed_task_ids(self, task_ids: Iterable[int], address: str) -> set[int]: ...

    def record_completion(self, task_id: int, address: str) -> CompletionWrite: ...
