"""Merges a quest's task definitions with one address's completion records."""

from __future__ import annotations

from .models import QuestTaskListing, UserTask, normalize_address
from .storage.base import QuestStorage


class CompletionAggregator:
    def __init__(self, *, storage: QuestStorage) -> None:
        self.storage = storage

    def list_user_tasks(self, quest_id: int, address: str) -> QuestTaskListing:
        """Tasks of `quest_id` ordered by id, each flagged with completion state.

        Two bulk reads (tasks, then completions for those task ids) regardless
        of quest size. Storage failures propagate as `StoreUnavailable`; an
        empty quest is reported with `found=False`.
        """
        if quest_id <= 0:
            raise ValueError("quest_id must be a positive integer")
        canonical = normalize_address(address)

        tasks = self.storage.list_tasks_by_quest(quest_id)
        if not tasks:
            return QuestTaskListing(quest_id=quest_id, address=canonical, found=False)

        completed_ids = self.storage.completed_task_ids((task.id for task in tasks), canonical)
        # Storage order is not trusted.
        ordered = sorted(tasks, key=lambda task: task.id)
        return QuestTaskListing(
            quest_id=quest_id,
            address=canonical,
            found=True,
            tasks=[UserTask.from_task(task, completed=task.id in completed_ids) for task in ordered],
        )
