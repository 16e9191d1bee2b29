"""
Task data model, the persisted settings block, and the named policies the store applies:
priority ordering and recurring-completion bookkeeping.

Wire format is camelCase (subItems, createdAt, passwordHash, ...) to stay compatible with
existing exported state files; attribute names are snake_case.
"""
from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from ulid import ULID

from recurrence import RecurrenceRule

PRIORITY_MIN, PRIORITY_MAX = 0, 5


def new_id() -> str:
    return str(ULID())


def now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def occurrence_key(task_id: str, day: dt.date | str) -> str:
    """Flattened completion-map key: '<taskId>-<YYYY-MM-DD>'."""
    d = day.isoformat() if isinstance(day, dt.date) else str(day)
    return f"{task_id}-{d}"


def split_occurrence_key(key: str) -> tuple[str, str] | None:
    """Inverse of occurrence_key. The date is always the trailing 10 characters."""
    if len(key) < 12 or key[-11] != "-":
        return None
    task_id, day = key[:-11], key[-10:]
    try:
        dt.date.fromisoformat(day)
    except ValueError:
        return None
    return task_id, day


class PriorityOrder(str, Enum):
    """
    How priorities sort in day views.

    urgent_first: 1 is most urgent, 5 least; 0 (no priority) after every prioritised task.
    highest_first: raw descending numbers, 5 first and 0 last.
    """

    URGENT_FIRST = "urgent_first"
    HIGHEST_FIRST = "highest_first"

    def sort_key(self, priority: int) -> int:
        """Lower value sorts first."""
        p = int(priority or 0)
        if self is PriorityOrder.HIGHEST_FIRST:
            return -p
        return p if p > 0 else PRIORITY_MAX + 1


class CompletionPolicy(str, Enum):
    """
    Bookkeeping for completing a recurring occurrence. The completion map is the record of
    which occurrences are done under both policies.

    reschedule: also advance the task's anchor date to the next occurrence.
    occurrence: never move the anchor.
    """

    RESCHEDULE = "reschedule"
    OCCURRENCE = "occurrence"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SubItem(_WireModel):
    id: str = Field(default_factory=new_id)
    title: str
    completed: bool = False
    priority: int = Field(default=0, ge=PRIORITY_MIN, le=PRIORITY_MAX)

    @field_validator("title")
    @classmethod
    def _title_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("title is required")
        return v


class Task(_WireModel):
    id: str = Field(default_factory=new_id)
    title: str
    notes: str = ""
    priority: int = Field(default=0, ge=PRIORITY_MIN, le=PRIORITY_MAX)
    date: dt.date
    completed: bool = False
    recurrence: RecurrenceRule | None = None
    sub_items: list[SubItem] = Field(default_factory=list, alias="subItems")
    created_at: str = Field(default_factory=now_iso, alias="createdAt")

    @field_validator("title")
    @classmethod
    def _title_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("title is required")
        return v

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority_default(cls, v: Any) -> Any:
        return 0 if v is None else v

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None and self.recurrence.enabled


class TaskInstance(Task):
    """A task as shown on one day. Recurring instances take `completed` from the completion map."""

    is_recurring_instance: bool = Field(default=False, alias="isRecurringInstance")
    instance_date: dt.date | None = Field(default=None, alias="instanceDate")


class Settings(_WireModel):
    password_hash: str | None = Field(default=None, alias="passwordHash")
    github_token: str | None = Field(default=None, alias="githubToken")
    github_repo: str | None = Field(default=None, alias="githubRepo")
    sound_enabled: bool = Field(default=True, alias="soundEnabled")
    sound_volume: float = Field(default=0.5, ge=0.0, le=1.0, alias="soundVolume")
