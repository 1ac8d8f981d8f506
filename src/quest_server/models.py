"""Pydantic models shared across API, storage, verification and aggregation.

Terms used in this file:
- Task: one completable unit of a quest, stored once per task id.
- Completion record: proof that one address satisfied one task.
- Patch: a partial update where every field is either present or absent.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import InvalidAddress

# Outcome of an insert-if-absent completion write.
CompletionWrite = Literal["recorded", "already_recorded"]
# Decision returned by a single strategy check.
CheckStatus = Literal["verified", "not_yet_satisfied", "external_check_failed"]

# task_type values that unlock their type-specific optional field.
TYPE_SPECIFIC_FIELDS = {
    "discord_guild_id": "discord",
    "quiz_name": "quiz",
}

_HEX_ADDRESS = re.compile(r"^(0x)?[0-9a-f]+$")


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Task(BaseModel):
    """Canonical task definition returned by storage and API."""

    id: int = Field(gt=0)
    quest_id: int = Field(gt=0)
    name: str
    desc: str = ""
    cta: str = ""
    href: str = ""
    verify_endpoint: str = ""
    verify_endpoint_type: str = ""
    verify_redirect: str | None = None
    task_type: str | None = None
    discord_guild_id: str | None = None
    quiz_name: str | None = None


class NewTask(StrictModel):
    """Fields for a task that does not have an id yet."""

    quest_id: int = Field(gt=0)
    name: str = Field(min_length=1)
    desc: str = ""
    cta: str = ""
    href: str = ""
    verify_endpoint: str = ""
    verify_endpoint_type: str = Field(min_length=1)
    verify_redirect: str | None = None
    task_type: str | None = None
    discord_guild_id: str | None = None
    quiz_name: str | None = None

    @model_validator(mode="after")
    def _type_specific_fields_match_task_type(self) -> NewTask:
        _check_type_specific_fields(self.task_type, self.model_dump())
        return self

    def with_id(self, task_id: int) -> Task:
        return Task(id=task_id, **self.model_dump())


class TaskPatch(StrictModel):
    """Partial task update.

    Only fields the caller actually sent are applied (`model_fields_set`).
    Display and strategy fields refuse null; the optional fields accept an
    explicit null, which clears the stored value.
    """

    name: str = Field(default="", min_length=1)
    desc: str = ""
    cta: str = ""
    href: str = ""
    verify_endpoint: str = ""
    verify_endpoint_type: str = Field(default="", min_length=1)
    verify_redirect: str | None = None
    task_type: str | None = None
    discord_guild_id: str | None = None
    quiz_name: str | None = None

    def changes(self) -> dict[str, Any]:
        # Declaration order keeps generated SQL stable.
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if name in self.model_fields_set
        }

    def apply(self, task: Task) -> Task:
        updated = task.model_copy(update=self.changes())
        _check_type_specific_fields(updated.task_type, updated.model_dump())
        return updated


class CompletionRecord(BaseModel):
    task_id: int
    address: str
    created_at: datetime


class UserTask(BaseModel):
    """A task merged with one address's completion state."""

    id: int
    quest_id: int
    name: str
    href: str
    cta: str
    verify_endpoint: str
    desc: str
    completed: bool

    @classmethod
    def from_task(cls, task: Task, *, completed: bool) -> UserTask:
        return cls(
            id=task.id,
            quest_id=task.quest_id,
            name=task.name,
            href=task.href,
            cta=task.cta,
            verify_endpoint=task.verify_endpoint,
            desc=task.desc,
            completed=completed,
        )


class QuestTaskListing(BaseModel):
    """Aggregator result; `found=False` is the explicit "quest has no tasks" marker."""

    quest_id: int
    address: str
    found: bool
    tasks: list[UserTask] = Field(default_factory=list)


class CheckDecision(BaseModel):
    status: CheckStatus
    reason: str | None = None

    @classmethod
    def verified(cls) -> CheckDecision:
        return cls(status="verified")

    @classmethod
    def not_yet_satisfied(cls, reason: str | None = None) -> CheckDecision:
        return cls(status="not_yet_satisfied", reason=reason)

    @classmethod
    def external_check_failed(cls, reason: str) -> CheckDecision:
        return cls(status="external_check_failed", reason=reason)


class VerificationOutcome(BaseModel):
    task_id: int
    address: str
    strategy: str
    status: CheckStatus
    reason: str | None = None
    # Set only when the outcome wrote (or found) a completion record.
    completion: CompletionWrite | None = None

    @property
    def verified(self) -> bool:
        return self.status == "verified"


class CreateTwitterRwRequest(StrictModel):
    """Request body for POST /admin/tasks/twitter_rw/create."""

    quest_id: int = Field(gt=0)
    name: str = Field(min_length=1)
    desc: str = ""
    post_link: str = Field(min_length=1)


class UpdateTaskRequest(TaskPatch):
    """Request body for POST /admin/tasks/custom/update."""

    id: int = Field(gt=0)

    def patch(self) -> TaskPatch:
        return TaskPatch.model_validate(self.model_dump(exclude={"id"}, exclude_unset=True))


class VerifyRequest(StrictModel):
    """Request body for the verification endpoints."""

    task_id: int = Field(gt=0)
    addr: str = Field(min_length=1)
    # Caller deadline; clipped to the configured maximum.
    timeout_s: float | None = Field(default=None, gt=0)


class CreateTaskResponse(BaseModel):
    id: int


def normalize_address(raw: str) -> str:
    """Canonical form used for every completion lookup and write.

    Whitespace is stripped and the value lowercased. Anything made only of hex
    digits is a felt: it gets the `0x` prefix and loses leading zeros, so
    `abc`, `0x00ABC` and `0xabc` all collide.
    """
    address = (raw or "").strip().lower()
    if not address:
        raise InvalidAddress("address must be a non-empty string")
    if _HEX_ADDRESS.match(address):
        digits = address.removeprefix("0x").lstrip("0") or "0"
        return f"0x{digits}"
    return address


def _check_type_specific_fields(task_type: str | None, values: dict[str, Any]) -> None:
    for field_name, required_type in TYPE_SPECIFIC_FIELDS.items():
        if values.get(field_name) is not None and task_type != required_type:
            raise ValueError(f"{field_name} is only allowed for task_type '{required_type}'")
