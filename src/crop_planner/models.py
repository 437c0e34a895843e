"""Core task models and constants."""

from __future__ import annotations

from dataclasses import dataclass, field
import datetime as dt
from typing import Any
import re

VALID_KINDS = (
    "sowing",
    "watering",
    "fertilizing",
    "pruning",
    "harvest",
    "maintenance",
    "monitoring",
    "other",
)
VALID_STATUSES = ("pending", "in_progress", "completed", "cancelled", "overdue")
VALID_PRIORITIES = ("low", "medium", "high", "urgent")
VALID_FREQUENCIES = ("daily", "weekly", "biweekly", "monthly", "custom")

ACTIVE_STATUSES = ("pending", "in_progress")
TERMINAL_STATUSES = ("completed", "cancelled")

TITLE_MAX_LENGTH = 100
TEXT_MAX_LENGTH = 1000
DURATION_RANGE = (1, 1440)
CUSTOM_INTERVAL_RANGE = (1, 365)
REMINDER_MINUTES_RANGE = (1, 10080)

TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
DEFAULT_REMINDER_TIME = "12:00"


@dataclass(slots=True, frozen=True)
class Recurrence:
    frequency: str
    custom_interval_days: int | None = None
    repeat_until: dt.date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency,
            "custom_interval_days": self.custom_interval_days,
            "repeat_until": _date_str(self.repeat_until),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Recurrence:
        if not isinstance(data, dict):
            raise TaskValidationError(f"recurrence must be a mapping, got {data!r}")
        return cls(
            frequency=str(data.get("frequency") or ""),
            custom_interval_days=_optional_int(data.get("custom_interval_days")),
            repeat_until=parse_date(data.get("repeat_until")),
        )


@dataclass(slots=True, frozen=True)
class Reminder:
    enabled: bool = False
    minutes_before: int | None = None
    sent: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "minutes_before": self.minutes_before,
            "sent": self.sent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Reminder:
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise TaskValidationError(f"reminder must be a mapping, got {data!r}")
        return cls(
            enabled=bool(data.get("enabled", False)),
            minutes_before=_optional_int(data.get("minutes_before")),
            sent=bool(data.get("sent", False)),
        )


@dataclass(slots=True)
class Task:
    task_id: str
    crop_id: str
    title: str
    kind: str
    scheduled_date: dt.date
    status: str = "pending"
    priority: str = "medium"
    description: str | None = None
    notes: str | None = None
    scheduled_time: str | None = None
    estimated_duration_minutes: int | None = None
    is_recurring: bool = False
    recurrence: Recurrence | None = None
    parent_task_id: str | None = None
    series_id: str | None = None
    reminder: Reminder = field(default_factory=Reminder)
    completed_date: dt.date | None = None
    created_by: str | None = None
    last_edited_by: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @property
    def root_id(self) -> str:
        """Id of the series root this record belongs to."""
        return self.parent_task_id or self.series_id or self.task_id

    @property
    def is_series_root(self) -> bool:
        return self.parent_task_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "crop_id": self.crop_id,
            "title": self.title,
            "description": self.description,
            "notes": self.notes,
            "kind": self.kind,
            "status": self.status,
            "priority": self.priority,
            "scheduled_date": _date_str(self.scheduled_date),
            "scheduled_time": self.scheduled_time,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "is_recurring": self.is_recurring,
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "parent_task_id": self.parent_task_id,
            "series_id": self.series_id,
            "reminder": self.reminder.to_dict(),
            "completed_date": _date_str(self.completed_date),
            "created_by": self.created_by,
            "last_edited_by": self.last_edited_by,
            "created_at": _datetime_str(self.created_at),
            "updated_at": _datetime_str(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        missing = [key for key in ("task_id", "crop_id", "title", "kind", "scheduled_date") if not data.get(key)]
        if missing:
            raise TaskValidationError(f"Task record missing keys {missing}")
        scheduled = parse_date(data["scheduled_date"])
        if scheduled is None:
            raise TaskValidationError("Task record has an empty scheduled_date")
        recurrence_data = data.get("recurrence")
        return cls(
            task_id=str(data["task_id"]),
            crop_id=str(data["crop_id"]),
            title=str(data["title"]),
            kind=str(data["kind"]),
            scheduled_date=scheduled,
            status=str(data.get("status") or "pending"),
            priority=str(data.get("priority") or "medium"),
            description=data.get("description"),
            notes=data.get("notes"),
            scheduled_time=_optional_time(data.get("scheduled_time")),
            estimated_duration_minutes=_optional_int(data.get("estimated_duration_minutes")),
            is_recurring=bool(data.get("is_recurring", False)),
            recurrence=Recurrence.from_dict(recurrence_data) if recurrence_data else None,
            parent_task_id=data.get("parent_task_id") or None,
            series_id=data.get("series_id") or None,
            reminder=Reminder.from_dict(data.get("reminder")),
            completed_date=parse_date(data.get("completed_date")),
            created_by=data.get("created_by"),
            last_edited_by=data.get("last_edited_by"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass(slots=True)
class TaskFilter:
    crop_id: str | None = None
    kind: str | None = None
    status: str | None = None
    priority: str | None = None
    date_from: dt.date | None = None
    date_to: dt.date | None = None
    is_recurring: bool | None = None
    query: str | None = None
    sort_by: str = "scheduled_date"
    descending: bool = False

    def matches(self, task: Task) -> bool:
        if self.crop_id and task.crop_id != self.crop_id:
            return False
        if self.kind and task.kind != self.kind:
            return False
        if self.status and task.status != self.status:
            return False
        if self.priority and task.priority != self.priority:
            return False
        if self.date_from and task.scheduled_date < self.date_from:
            return False
        if self.date_to and task.scheduled_date > self.date_to:
            return False
        if self.is_recurring is not None and task.is_recurring != self.is_recurring:
            return False
        if self.query:
            needle = self.query.strip().lower()
            haystack = f"{task.title}\n{task.description or ''}".lower()
            if needle not in haystack:
                return False
        return True


def parse_date(value: Any) -> dt.date | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise TaskValidationError(f"Invalid date '{value}': expected YYYY-MM-DD") from exc


def parse_datetime(value: Any) -> dt.datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value
    try:
        return dt.datetime.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise TaskValidationError(f"Invalid timestamp '{value}'") from exc


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise TaskValidationError(f"Expected an integer, got '{value}'") from exc


def _optional_time(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.time):
        return value.strftime("%H:%M")
    # PyYAML reads unquoted 10:00 as sexagesimal int 600.
    if isinstance(value, int):
        return f"{value // 60:02d}:{value % 60:02d}"
    return str(value).strip()


def _date_str(value: dt.date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _datetime_str(value: dt.datetime | None) -> str | None:
    return value.isoformat(timespec="seconds") if value is not None else None


class TaskError(Exception):
    """Base error for task operations."""


class TaskValidationError(TaskError):
    """Raised when a task record breaks a write-boundary invariant."""


class InvalidTransitionError(TaskError):
    """Raised when a status change is not allowed by the task lifecycle."""


class TaskNotFoundError(TaskError):
    """Raised when a task cannot be located."""


class TaskConflictError(TaskError):
    """Raised for collisions and ambiguous actions."""
