"""Reminder trigger computation and due-reminder selection.

Scheduled dates and times are wall-clock values stored without a zone; they
are interpreted as UTC when turned into an instant. Nothing here writes the
``sent`` flag: the caller persists it with a conditional update after
delivering the notification, so overlapping scans stay harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import datetime as dt
import logging
from typing import Iterable

from .models import (
    ACTIVE_STATUSES,
    DEFAULT_REMINDER_TIME,
    TIME_RE,
    Task,
    TaskError,
    TaskValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReminderScan:
    due: list[Task] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def scheduled_instant(task: Task) -> dt.datetime:
    raw_time = task.scheduled_time or DEFAULT_REMINDER_TIME
    if not TIME_RE.fullmatch(raw_time):
        raise TaskValidationError(f"Task {task.task_id} has invalid scheduled_time '{raw_time}'")
    hours, minutes = (int(part) for part in raw_time.split(":"))
    return dt.datetime.combine(
        task.scheduled_date,
        dt.time(hours, minutes),
        tzinfo=dt.timezone.utc,
    )


def trigger_instant(task: Task) -> dt.datetime:
    minutes_before = task.reminder.minutes_before
    if minutes_before is None:
        raise TaskValidationError(f"Task {task.task_id} has no reminder minutes_before")
    return scheduled_instant(task) - dt.timedelta(minutes=minutes_before)


def is_due(task: Task, now: dt.datetime) -> bool:
    reminder = task.reminder
    if not reminder.enabled or reminder.sent:
        return False
    if task.status not in ACTIVE_STATUSES:
        return False
    return _as_utc(now) >= trigger_instant(task)


def scan_reminders(tasks: Iterable[Task], now: dt.datetime) -> ReminderScan:
    """Split ``tasks`` into due reminders and records that could not be read."""
    scan = ReminderScan()
    for task in tasks:
        try:
            if is_due(task, now):
                scan.due.append(task)
        except (TaskError, AttributeError, TypeError, ValueError) as exc:
            task_id = getattr(task, "task_id", "?")
            logger.warning("Skipping reminder check for task %s: %s", task_id, exc)
            scan.skipped.append((str(task_id), str(exc)))
    return scan


def due_for_reminder(tasks: Iterable[Task], now: dt.datetime) -> list[Task]:
    return scan_reminders(tasks, now).due


def mark_sent(task: Task) -> Task:
    return replace(task, reminder=replace(task.reminder, sent=True))
