"""Write-boundary checks for task records."""

from __future__ import annotations

from .models import (
    CUSTOM_INTERVAL_RANGE,
    DURATION_RANGE,
    REMINDER_MINUTES_RANGE,
    TEXT_MAX_LENGTH,
    TIME_RE,
    TITLE_MAX_LENGTH,
    VALID_FREQUENCIES,
    VALID_KINDS,
    VALID_PRIORITIES,
    VALID_STATUSES,
    Task,
    TaskValidationError,
)


def _check_range(name: str, value: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if not low <= value <= high:
        raise TaskValidationError(f"{name} must be between {low} and {high}, got {value}")


def validate_task(task: Task) -> None:
    """Raise TaskValidationError if the record cannot be written.

    The record is only inspected, never modified, so a rejected write leaves
    the caller's in-memory copy exactly as it was.
    """
    if not task.task_id:
        raise TaskValidationError("task_id is required")
    if not task.crop_id or not task.crop_id.strip():
        raise TaskValidationError("crop_id is required")

    title = (task.title or "").strip()
    if not title:
        raise TaskValidationError("title is required")
    if len(title) > TITLE_MAX_LENGTH:
        raise TaskValidationError(f"title cannot exceed {TITLE_MAX_LENGTH} characters")
    if task.description and len(task.description) > TEXT_MAX_LENGTH:
        raise TaskValidationError(f"description cannot exceed {TEXT_MAX_LENGTH} characters")
    if task.notes and len(task.notes) > TEXT_MAX_LENGTH:
        raise TaskValidationError(f"notes cannot exceed {TEXT_MAX_LENGTH} characters")

    if task.kind not in VALID_KINDS:
        raise TaskValidationError(f"Invalid kind: {task.kind}")
    if task.status not in VALID_STATUSES:
        raise TaskValidationError(f"Invalid status: {task.status}")
    if task.priority not in VALID_PRIORITIES:
        raise TaskValidationError(f"Invalid priority: {task.priority}")

    if task.scheduled_time is not None and not TIME_RE.fullmatch(task.scheduled_time):
        raise TaskValidationError(
            f"scheduled_time must be HH:MM (24-hour), got '{task.scheduled_time}'"
        )
    if task.estimated_duration_minutes is not None:
        _check_range("estimated_duration_minutes", task.estimated_duration_minutes, DURATION_RANGE)

    _validate_recurrence(task)
    _validate_reminder(task)

    if task.status == "completed" and task.completed_date is None:
        raise TaskValidationError("completed_date is required when status is completed")
    if task.status != "completed" and task.completed_date is not None:
        raise TaskValidationError("completed_date is only allowed when status is completed")

    if task.parent_task_id is not None:
        if task.parent_task_id == task.task_id:
            raise TaskValidationError("parent_task_id cannot point to the task itself")
        if task.series_id is not None and task.series_id != task.parent_task_id:
            raise TaskValidationError("series_id of a generated task must match parent_task_id")


def _validate_recurrence(task: Task) -> None:
    recurrence = task.recurrence
    if not task.is_recurring:
        if recurrence is not None and recurrence.repeat_until is not None:
            if recurrence.repeat_until < task.scheduled_date:
                raise TaskValidationError("repeat_until must be on or after scheduled_date")
        return

    if recurrence is None or not recurrence.frequency:
        raise TaskValidationError("frequency is required for recurring tasks")
    if recurrence.frequency not in VALID_FREQUENCIES:
        raise TaskValidationError(f"Invalid frequency: {recurrence.frequency}")
    if recurrence.frequency == "custom" and recurrence.custom_interval_days is None:
        raise TaskValidationError("custom_interval_days is required for custom frequency")
    if recurrence.custom_interval_days is not None:
        _check_range("custom_interval_days", recurrence.custom_interval_days, CUSTOM_INTERVAL_RANGE)
    if recurrence.repeat_until is not None and recurrence.repeat_until < task.scheduled_date:
        raise TaskValidationError("repeat_until must be on or after scheduled_date")


def _validate_reminder(task: Task) -> None:
    reminder = task.reminder
    if reminder.enabled and reminder.minutes_before is None:
        raise TaskValidationError("minutes_before is required when the reminder is enabled")
    if reminder.minutes_before is not None:
        _check_range("minutes_before", reminder.minutes_before, REMINDER_MINUTES_RANGE)
