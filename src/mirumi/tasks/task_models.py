# src/mirumi/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


# "Field not mentioned in this patch". Compared by identity only.
UNSET: Any = object()


class TaskPriority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw.upper())
        except ValueError:
            return cls.MEDIUM


class TaskStatus(StrEnum):
    """Task lifecycle status (fixed set, no custom transitions)."""

    INBOX = "INBOX"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.INBOX
        try:
            return cls(raw.upper())
        except ValueError:
            return cls.INBOX


class ActionKind(StrEnum):
    """
    Closed vocabulary of audit events.

    STATUS_CHANGED is the fallback for any status value outside the mapping
    below (and for unknown action text read back from the store).
    """

    CREATED = "CREATED"
    STARTED = "STARTED"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"
    RESTORED = "RESTORED"
    STATUS_CHANGED = "STATUS_CHANGED"
    TARGET_DATE_CHANGED = "TARGET_DATE_CHANGED"

    @classmethod
    def for_status(cls, status: TaskStatus | str) -> ActionKind:
        """Action recorded when a task moves into `status`."""
        return _STATUS_ACTIONS.get(str(status), cls.STATUS_CHANGED)

    @classmethod
    def from_db(cls, raw: str | None) -> ActionKind:
        if not raw:
            return cls.STATUS_CHANGED
        try:
            return cls(raw)
        except ValueError:
            return cls.STATUS_CHANGED


_STATUS_ACTIONS: dict[str, ActionKind] = {
    TaskStatus.IN_PROGRESS.value: ActionKind.STARTED,
    TaskStatus.PAUSED.value: ActionKind.PAUSED,
    TaskStatus.COMPLETED.value: ActionKind.COMPLETED,
    TaskStatus.ARCHIVED.value: ActionKind.ARCHIVED,
    TaskStatus.INBOX.value: ActionKind.RESTORED,
}


class EndType(StrEnum):
    """How a run session ended. RUNNING marks a session that is still open."""

    RUNNING = "running"
    COMPLETED = "completed"
    PAUSED = "paused"
    TIMEOUT = "timeout"
    INTERRUPTED = "interrupted"

    @classmethod
    def from_db(cls, raw: str | None) -> EndType:
        if not raw:
            return cls.INTERRUPTED
        try:
            return cls(raw.lower())
        except ValueError:
            return cls.INTERRUPTED


@dataclass(slots=True)
class TaskMemo:
    id: str
    task_id: str
    content: str
    created_at: float


@dataclass(slots=True)
class TaskNote:
    id: str
    task_id: str
    title: str
    content: str
    created_at: float
    updated_at: float


@dataclass(slots=True)
class RunHistory:
    id: str
    task_id: str
    started_at: float
    ended_at: float | None
    duration: int
    end_type: EndType

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


@dataclass(slots=True)
class TimeExtension:
    id: str
    task_id: str
    added_minutes: int
    previous_duration: int
    new_duration: int
    reason: str | None
    created_at: float


@dataclass(slots=True)
class ActionHistory:
    id: str
    task_id: str
    action_type: ActionKind
    previous_status: str | None
    new_status: str | None
    metadata: dict[str, Any] | None
    created_at: float


@dataclass(slots=True)
class Task:
    id: str
    title: str
    description: str | None
    url: str | None
    external_message_ref: str | None
    priority: TaskPriority
    status: TaskStatus
    total_time_spent: int
    expected_duration: int | None
    remaining_time_seconds: int | None  # snapshot taken on pause
    target_date: str | None
    is_important: bool
    created_at: float
    updated_at: float
    completed_at: float | None = None
    last_paused_at: float | None = None
    last_run_at: float | None = None

    tags: list[str] = field(default_factory=list)
    memos: list[TaskMemo] = field(default_factory=list)
    notes: list[TaskNote] = field(default_factory=list)
    run_history: list[RunHistory] = field(default_factory=list)
    time_extensions: list[TimeExtension] = field(default_factory=list)
    action_history: list[ActionHistory] = field(default_factory=list)


@dataclass(slots=True)
class CreateTaskInput:
    title: str
    description: str | None = None
    url: str | None = None
    external_message_ref: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    expected_duration: int | None = 5
    target_date: str | None = None
    is_important: bool = False
    tags: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TaskPatch:
    """
    Sparse task update.

    A field left at UNSET is not touched. Any other value, including None for
    nullable columns, is written as given.
    """

    title: Any = UNSET
    description: Any = UNSET
    url: Any = UNSET
    external_message_ref: Any = UNSET
    priority: Any = UNSET
    status: Any = UNSET
    total_time_spent: Any = UNSET
    expected_duration: Any = UNSET
    remaining_time_seconds: Any = UNSET
    target_date: Any = UNSET
    is_important: Any = UNSET
    completed_at: Any = UNSET
    last_paused_at: Any = UNSET
    last_run_at: Any = UNSET


@dataclass(slots=True)
class NotePatch:
    title: Any = UNSET
    content: Any = UNSET


@dataclass(slots=True)
class ExtendTimeInput:
    task_id: str
    added_minutes: int
    previous_duration: int
    new_duration: int
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class SidebarCounts:
    inbox: int
    completed: int
    starred: int
    today: int
    tomorrow: int
    overdue: int
    archive: int
