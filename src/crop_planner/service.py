"""Orchestration of task lifecycle, recurrence and reminders over storage."""

from __future__ import annotations

from dataclasses import dataclass, replace
import datetime as dt
import logging
from pathlib import Path
from typing import Iterable

from . import calendar_view, recurrence, reminders, state_machine, stats, storage
from .models import (
    ACTIVE_STATUSES,
    VALID_FREQUENCIES,
    InvalidTransitionError,
    Recurrence,
    Reminder,
    Task,
    TaskError,
    TaskFilter,
    TaskNotFoundError,
    TaskValidationError,
)
from .validation import validate_task

logger = logging.getLogger(__name__)

PRIORITY_SORT = {"urgent": 0, "high": 1, "medium": 2, "low": 3}
SORT_KEYS = ("scheduled_date", "priority", "title", "created_at")
CREATE_STATUSES = ("pending", "in_progress")
_UNSET = object()


def _today() -> dt.date:
    return dt.date.today()


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _utc_instant(value: dt.datetime | None) -> dt.datetime:
    """Comparable UTC instant; naive timestamps are read as UTC."""
    if value is None:
        return dt.datetime.min.replace(tzinfo=dt.timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _sort_key(sort_by: str):
    if sort_by == "priority":
        return lambda task: (PRIORITY_SORT.get(task.priority, 99), task.scheduled_date, task.title)
    if sort_by == "title":
        return lambda task: (task.title.lower(), task.scheduled_date)
    if sort_by == "created_at":
        return lambda task: (_utc_instant(task.created_at), task.task_id)
    return lambda task: (task.scheduled_date, task.scheduled_time or "99:99", task.task_id)


@dataclass(slots=True)
class CompletionResult:
    task: Task
    successor: Task | None = None


@dataclass(slots=True)
class MarkSentResult:
    marked: list[Task]
    skipped: list[str]


class PlanningService:
    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def ensure_layout(self) -> None:
        storage.ensure_layout(self.root)

    def _load_all(self, today: dt.date) -> list[Task]:
        return [state_machine.normalize(task, today) for task in storage.load_tasks(self.root)]

    def _load(self, task_id: str, today: dt.date) -> Task:
        return state_machine.normalize(storage.find_task(self.root, task_id.strip()), today)

    def _save(self, task: Task, *, today: dt.date, now: dt.datetime) -> Task:
        prepared = state_machine.normalize(replace(task, updated_at=now), today)
        validate_task(prepared)
        storage.write_task(self.root, prepared)
        return prepared

    def _new_task_id(self, today: dt.date) -> str:
        return storage.next_task_id(self.root, today.isoformat())

    def _reminder_minutes(self, minutes: int | None) -> int:
        if minutes is not None:
            return minutes
        return storage.resolve_default_reminder_minutes(self.root)

    def load_tasks(self, task_filter: TaskFilter | None = None, *, today: dt.date | None = None) -> list[Task]:
        today = today or _today()
        task_filter = task_filter or TaskFilter()
        if task_filter.sort_by not in SORT_KEYS:
            raise TaskValidationError(
                f"Invalid sort field: {task_filter.sort_by}. Choose from {', '.join(SORT_KEYS)}"
            )
        tasks = [task for task in self._load_all(today) if task_filter.matches(task)]
        return sorted(tasks, key=_sort_key(task_filter.sort_by), reverse=task_filter.descending)

    def list_tasks(self, task_filter: TaskFilter | None = None, *, today: dt.date | None = None) -> list[Task]:
        return self.load_tasks(task_filter, today=today)

    def get_task(self, task_id: str, *, today: dt.date | None = None) -> Task:
        return self._load(task_id, today or _today())

    def create_task(
        self,
        crop_id: str,
        title: str,
        kind: str,
        scheduled_date: dt.date,
        *,
        priority: str = "medium",
        status: str = "pending",
        description: str | None = None,
        notes: str | None = None,
        scheduled_time: str | None = None,
        estimated_duration_minutes: int | None = None,
        frequency: str | None = None,
        custom_interval_days: int | None = None,
        repeat_until: dt.date | None = None,
        reminder: bool = False,
        reminder_minutes: int | None = None,
        created_by: str | None = None,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Task:
        today = today or _today()
        now = now or utc_now()
        if status == "overdue":
            raise InvalidTransitionError("overdue is derived from the scheduled date and cannot be set")
        if status not in CREATE_STATUSES:
            raise TaskValidationError(f"New tasks must start as pending or in_progress, got '{status}'")

        task_id = self._new_task_id(today)
        storage.ensure_new_task_id(self.root, task_id)
        is_recurring = frequency is not None
        task = Task(
            task_id=task_id,
            crop_id=(crop_id or "").strip(),
            title=(title or "").strip(),
            kind=kind,
            scheduled_date=scheduled_date,
            status=status,
            priority=priority,
            description=_clean(description),
            notes=_clean(notes),
            scheduled_time=_clean(scheduled_time),
            estimated_duration_minutes=estimated_duration_minutes,
            is_recurring=is_recurring,
            recurrence=(
                Recurrence(
                    frequency=frequency,
                    custom_interval_days=custom_interval_days,
                    repeat_until=repeat_until,
                )
                if is_recurring
                else None
            ),
            series_id=task_id,
            reminder=Reminder(
                enabled=reminder,
                minutes_before=self._reminder_minutes(reminder_minutes) if reminder else reminder_minutes,
            ),
            created_by=_clean(created_by),
            last_edited_by=_clean(created_by),
            created_at=now,
        )
        saved = self._save(task, today=today, now=now)
        logger.info("Created task %s for crop %s on %s", saved.task_id, saved.crop_id, saved.scheduled_date)
        return saved

    def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        crop_id: str | None = None,
        kind: str | None = None,
        priority: str | None = None,
        description: str | None = None,
        notes: str | None = None,
        scheduled_time=_UNSET,
        estimated_duration_minutes=_UNSET,
        frequency=_UNSET,
        custom_interval_days=_UNSET,
        repeat_until=_UNSET,
        reminder: bool | None = None,
        reminder_minutes: int | None = None,
        actor: str | None = None,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Task:
        """Apply field edits. Status and date changes go through the lifecycle methods."""
        today = today or _today()
        now = now or utc_now()
        task = self._load(task_id, today)

        changes: dict[str, object] = {}
        if title is not None:
            changes["title"] = title.strip()
        if crop_id is not None:
            changes["crop_id"] = crop_id.strip()
        if kind is not None:
            changes["kind"] = kind
        if priority is not None:
            changes["priority"] = priority
        if description is not None:
            changes["description"] = _clean(description)
        if notes is not None:
            changes["notes"] = _clean(notes)
        if scheduled_time is not _UNSET:
            changes["scheduled_time"] = _clean(scheduled_time)
        if estimated_duration_minutes is not _UNSET:
            changes["estimated_duration_minutes"] = estimated_duration_minutes

        recurrence_changes: dict[str, object] = {}
        if custom_interval_days is not _UNSET:
            recurrence_changes["custom_interval_days"] = custom_interval_days
        if repeat_until is not _UNSET:
            recurrence_changes["repeat_until"] = repeat_until

        if frequency is not _UNSET:
            if frequency is None:
                changes["is_recurring"] = False
                changes["recurrence"] = None
            else:
                base = task.recurrence or Recurrence(frequency=frequency)
                changes["is_recurring"] = True
                changes["recurrence"] = replace(base, frequency=frequency, **recurrence_changes)
        elif task.recurrence is not None and recurrence_changes:
            changes["recurrence"] = replace(task.recurrence, **recurrence_changes)
        elif recurrence_changes:
            raise TaskValidationError(f"Task {task.task_id} does not repeat; set a frequency first")

        if reminder is not None or reminder_minutes is not None:
            enabled = task.reminder.enabled if reminder is None else reminder
            minutes = reminder_minutes if reminder_minutes is not None else task.reminder.minutes_before
            if enabled and minutes is None:
                minutes = self._reminder_minutes(None)
            timing_changed = minutes != task.reminder.minutes_before or enabled != task.reminder.enabled
            changes["reminder"] = Reminder(
                enabled=enabled,
                minutes_before=minutes,
                sent=task.reminder.sent and not timing_changed,
            )
        if "scheduled_time" in changes and changes["scheduled_time"] != task.scheduled_time:
            changes["reminder"] = replace(changes.get("reminder", task.reminder), sent=False)

        if actor:
            changes["last_edited_by"] = actor
        updated = self._save(replace(task, **changes), today=today, now=now)
        logger.info("Updated task %s", updated.task_id)
        return updated

    def start_task(
        self,
        task_id: str,
        *,
        actor: str | None = None,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Task:
        today = today or _today()
        task = self._load(task_id, today)
        started = state_machine.start(task, actor=actor)
        logger.info("Task %s -> in_progress", task.task_id)
        return self._save(started, today=today, now=now or utc_now())

    def cancel_task(
        self,
        task_id: str,
        *,
        actor: str | None = None,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Task:
        today = today or _today()
        task = self._load(task_id, today)
        cancelled = state_machine.cancel(task, actor=actor)
        logger.info("Task %s -> cancelled", task.task_id)
        return self._save(cancelled, today=today, now=now or utc_now())

    def complete_task(
        self,
        task_id: str,
        *,
        actor: str | None = None,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> CompletionResult:
        """Complete a task and, for recurring series, persist the next instance.

        A failure while generating the next instance is logged and never undoes
        the completion.
        """
        today = today or _today()
        now = now or utc_now()
        task = self._load(task_id, today)
        completed = self._save(state_machine.complete(task, today, actor=actor), today=today, now=now)
        logger.info("Task %s -> completed", completed.task_id)

        successor: Task | None = None
        try:
            successor = self.generate_next_occurrence(completed, today=today, now=now)
        except Exception:
            logger.exception("Recurrence generation failed for task %s", completed.task_id)
        return CompletionResult(task=completed, successor=successor)

    def _series_root(self, task: Task) -> Task | None:
        if task.is_series_root:
            return task
        try:
            return storage.find_task(self.root, task.parent_task_id or "")
        except TaskNotFoundError:
            logger.warning("Series root %s of task %s is missing", task.parent_task_id, task.task_id)
            return None

    def _open_instance_exists(self, series_id: str, scheduled_date: dt.date) -> bool:
        for existing in storage.load_tasks(self.root):
            if existing.root_id != series_id:
                continue
            if existing.scheduled_date == scheduled_date and state_machine.stored_status(existing) in ACTIVE_STATUSES:
                return True
        return False

    def generate_next_occurrence(
        self,
        completed: Task,
        *,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Task | None:
        today = today or _today()
        now = now or utc_now()
        series_root = self._series_root(completed)
        if series_root is None:
            return None

        successor = recurrence.generate_next_occurrence(
            completed,
            today,
            series_root=series_root,
            new_task_id=self._new_task_id(today),
            now=now,
        )
        if successor is None:
            return None
        if self._open_instance_exists(successor.root_id, successor.scheduled_date):
            logger.info(
                "Series %s already has an open instance on %s; not creating another",
                successor.root_id,
                successor.scheduled_date,
            )
            return None

        saved = self._save(successor, today=today, now=now)
        logger.info("Created %s as next instance of series %s", saved.task_id, saved.root_id)
        return saved

    def reschedule_task(
        self,
        task_id: str,
        new_date: dt.date,
        *,
        actor: str | None = None,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Task:
        today = today or _today()
        task = self._load(task_id, today)
        moved = state_machine.reschedule(task, new_date, today, actor=actor)
        if new_date != task.scheduled_date:
            moved = replace(moved, reminder=replace(moved.reminder, sent=False))
        logger.info("Task %s rescheduled to %s", task.task_id, new_date)
        return self._save(moved, today=today, now=now or utc_now())

    def duplicate_task(
        self,
        task_id: str,
        new_date: dt.date,
        *,
        actor: str | None = None,
        today: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Task:
        today = today or _today()
        source = self._load(task_id, today)
        title = f"{source.title} (copy)"
        return self.create_task(
            source.crop_id,
            title[:100],
            source.kind,
            new_date,
            priority=source.priority,
            description=source.description,
            scheduled_time=source.scheduled_time,
            estimated_duration_minutes=source.estimated_duration_minutes,
            reminder=source.reminder.enabled,
            reminder_minutes=source.reminder.minutes_before,
            created_by=actor or source.created_by,
            today=today,
            now=now,
        )

    def delete_task(self, task_id: str, *, hard: bool = False) -> None:
        if hard:
            storage.hard_delete(self.root, task_id)
            logger.info("Hard deleted task %s", task_id)
            return
        target = storage.move_to_trash(self.root, task_id)
        logger.info("Moved task %s to %s", task_id, target)

    def scan_due_reminders(
        self,
        now: dt.datetime | None = None,
        task_filter: TaskFilter | None = None,
    ) -> reminders.ReminderScan:
        now = now or utc_now()
        tasks = self.load_tasks(task_filter, today=now.date())
        scan = reminders.scan_reminders(tasks, now)
        logger.info("Reminder scan at %s: %d due, %d skipped", now, len(scan.due), len(scan.skipped))
        return scan

    def mark_reminders_sent(
        self,
        task_ids: Iterable[str],
        *,
        now: dt.datetime | None = None,
    ) -> MarkSentResult:
        """Set ``reminder.sent`` only on records that are still unsent."""
        now = now or utc_now()
        today = now.date()
        marked: list[Task] = []
        skipped: list[str] = []
        for task_id in task_ids:
            try:
                current = self._load(task_id, today)
            except TaskNotFoundError:
                skipped.append(task_id)
                continue
            if current.reminder.sent or not current.reminder.enabled:
                skipped.append(task_id)
                continue
            candidate = state_machine.normalize(replace(reminders.mark_sent(current), updated_at=now), today)
            try:
                validate_task(candidate)
            except TaskError as exc:
                logger.warning("Not marking reminder for task %s: %s", task_id, exc)
                skipped.append(task_id)
                continue
            marked.append(candidate)
        storage.write_tasks(self.root, marked)
        return MarkSentResult(marked=marked, skipped=skipped)

    def build_month_view(
        self,
        year: int,
        month: int,
        *,
        crop_id: str | None = None,
        today: dt.date | None = None,
    ) -> calendar_view.MonthView:
        today = today or _today()
        grid_start, grid_end = calendar_view.month_bounds(year, month)
        tasks = self.load_tasks(TaskFilter(crop_id=crop_id, date_from=grid_start, date_to=grid_end), today=today)
        return calendar_view.build_month(year, month, tasks, today)

    def get_statistics(
        self,
        *,
        crop_id: str | None = None,
        today: dt.date | None = None,
        window_days: int | None = None,
    ) -> stats.PlanningStats:
        today = today or _today()
        if window_days is None:
            window_days = storage.resolve_stats_window_days(self.root)
        if window_days < 0:
            raise TaskValidationError("window_days cannot be negative")
        tasks = self.load_tasks(TaskFilter(crop_id=crop_id), today=today)
        return stats.summarize(tasks, today, window_days)


def parse_frequency(value: str | None) -> str | None:
    if value is None:
        return None
    frequency = value.strip().lower()
    if frequency not in VALID_FREQUENCIES:
        raise TaskValidationError(
            f"Invalid frequency: {value}. Choose from {', '.join(VALID_FREQUENCIES)}"
        )
    return frequency
