"""Task creation and partial updates for admin endpoints."""

from __future__ import annotations

import logging

from .models import CreateTwitterRwRequest, NewTask, Task, TaskPatch
from .storage.base import QuestStorage

logger = logging.getLogger(__name__)

TWITTER_RW_VERIFY_ENDPOINT = "quests/verify_twitter_rw"


class TaskAdmin:
    def __init__(self, *, storage: QuestStorage) -> None:
        self.storage = storage

    def create_task(self, draft: NewTask) -> Task:
        task = self.storage.create_task(draft)
        logger.info(
            "admin event=task_created task_id=%s quest_id=%s verify_endpoint_type=%s task_type=%s",
            task.id,
            task.quest_id,
            task.verify_endpoint_type,
            task.task_type,
        )
        return task

    def create_twitter_rw(self, payload: CreateTwitterRwRequest) -> Task:
        """Retweet task: verified by redirect confirmation to the post link."""
        draft = NewTask(
            quest_id=payload.quest_id,
            name=payload.name,
            desc=payload.desc,
            cta="Retweet",
            href=payload.post_link,
            verify_endpoint=TWITTER_RW_VERIFY_ENDPOINT,
            verify_endpoint_type="default",
            verify_redirect=payload.post_link,
            task_type="twitter_rw",
        )
        return self.create_task(draft)

    def update_task(self, task_id: int, patch: TaskPatch) -> Task:
        updated = self.storage.update_task(task_id, patch)
        logger.info(
            "admin event=task_updated task_id=%s fields=%s",
            task_id,
            sorted(patch.changes()),
        )
        return updated
