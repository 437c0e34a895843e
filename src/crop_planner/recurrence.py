"""Next-occurrence computation for recurring task series."""

from __future__ import annotations

import calendar
from dataclasses import replace
import datetime as dt
import logging
import uuid

from .models import Recurrence, Reminder, Task

logger = logging.getLogger(__name__)

FIXED_STEP_DAYS = {
    "daily": 1,
    "weekly": 7,
    "biweekly": 15,
}


def add_months(value: dt.date, months: int) -> dt.date:
    """Shift by calendar months, clamping to the last day of the target month."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.date(year, month, min(value.day, last_day))


def next_date(
    frequency: str,
    current_date: dt.date,
    custom_interval_days: int | None = None,
) -> dt.date | None:
    """Return the date after ``current_date`` for ``frequency``.

    ``None`` means the frequency cannot produce a date (unknown value, or a
    custom frequency without an interval).
    """
    if frequency in FIXED_STEP_DAYS:
        return current_date + dt.timedelta(days=FIXED_STEP_DAYS[frequency])
    if frequency == "monthly":
        return add_months(current_date, 1)
    if frequency == "custom":
        if not custom_interval_days or custom_interval_days < 1:
            return None
        return current_date + dt.timedelta(days=custom_interval_days)
    return None


def next_occurrence_date(
    recurrence: Recurrence,
    current_date: dt.date,
    today: dt.date,
) -> dt.date | None:
    """Next date in the series, floored at ``today`` and bounded by repeat_until."""
    candidate = next_date(recurrence.frequency, current_date, recurrence.custom_interval_days)
    if candidate is None:
        return None
    if candidate < today:
        candidate = today
    if recurrence.repeat_until is not None and candidate > recurrence.repeat_until:
        return None
    return candidate


def _series_settings(completed: Task, series_root: Task | None) -> Task | None:
    if completed.is_series_root:
        return completed
    if series_root is None:
        return None
    if series_root.task_id != completed.parent_task_id:
        logger.warning(
            "Series root %s does not match parent %s of task %s",
            series_root.task_id,
            completed.parent_task_id,
            completed.task_id,
        )
        return None
    return series_root


def generate_next_occurrence(
    completed: Task,
    today: dt.date,
    *,
    series_root: Task | None = None,
    new_task_id: str | None = None,
    now: dt.datetime | None = None,
) -> Task | None:
    """Materialize the successor of a just-completed recurring task.

    Recurrence settings always come from the series root: the completed task
    itself when it is the root, otherwise ``series_root`` as loaded by the
    caller. A generated child completed without its root does not spawn from
    itself. The successor date is computed from the completed instance.

    Never raises for a well-formed record; anything that cannot produce a
    successor ends the series and returns ``None``.
    """
    if completed.status != "completed":
        return None

    settings = _series_settings(completed, series_root)
    if settings is None or not settings.is_recurring or settings.recurrence is None:
        return None

    recurrence = settings.recurrence
    upcoming = next_occurrence_date(recurrence, completed.scheduled_date, today)
    if upcoming is None:
        if next_date(recurrence.frequency, completed.scheduled_date, recurrence.custom_interval_days) is None:
            logger.warning(
                "Series %s has unusable frequency '%s'; ending series",
                completed.root_id,
                recurrence.frequency,
            )
        else:
            logger.info("Series %s reached repeat_until %s", completed.root_id, recurrence.repeat_until)
        return None

    root_id = completed.parent_task_id or completed.task_id
    return replace(
        completed,
        task_id=new_task_id or uuid.uuid4().hex,
        scheduled_date=upcoming,
        status="pending",
        completed_date=None,
        is_recurring=True,
        recurrence=recurrence,
        reminder=Reminder(
            enabled=completed.reminder.enabled,
            minutes_before=completed.reminder.minutes_before,
            sent=False,
        ),
        parent_task_id=root_id,
        series_id=root_id,
        created_at=now,
        updated_at=now,
    )
