"""Status lifecycle and overdue derivation for a single task record.

Every function here is pure: it inspects the record it is given and returns a
new one. Nothing is written anywhere, and the input record is never mutated,
so callers can apply these freely on load and again right before a save.

Lifecycle::

    pending -> in_progress -> completed
    pending | in_progress -> cancelled
    pending -> overdue   (derived from the date, never requested)
"""

from __future__ import annotations

from dataclasses import replace
import datetime as dt

from .models import VALID_STATUSES, InvalidTransitionError, Task

START_FROM = ("pending",)
COMPLETE_FROM = ("pending", "in_progress")
CANCEL_FROM = ("pending", "in_progress")
RESCHEDULE_FROM = ("pending", "in_progress", "overdue")


def derive_status(task: Task, today: dt.date) -> str:
    if task.status == "pending" and task.scheduled_date < today:
        return "overdue"
    return task.status


def stored_status(task: Task) -> str:
    """Status value to persist; overdue is recomputed on every load."""
    if task.status == "overdue":
        return "pending"
    return task.status


def normalize(task: Task, today: dt.date) -> Task:
    """Return the record with its status re-derived for ``today``.

    A record that was presenting as overdue but has since been moved to
    ``today`` or later heals back to pending.
    """
    base = replace(task, status=stored_status(task))
    status = derive_status(base, today)
    if status == task.status:
        return task
    return replace(base, status=status)


def _require(task: Task, allowed: tuple[str, ...], action: str) -> None:
    if task.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot {action} task {task.task_id} from status '{task.status}'"
        )


def _edited(task: Task, actor: str | None, **changes) -> Task:
    if actor:
        changes["last_edited_by"] = actor
    return replace(task, **changes)


def start(task: Task, *, actor: str | None = None) -> Task:
    _require(task, START_FROM, "start")
    return _edited(task, actor, status="in_progress")


def complete(task: Task, today: dt.date, *, actor: str | None = None) -> Task:
    _require(task, COMPLETE_FROM, "complete")
    return _edited(task, actor, status="completed", completed_date=today)


def cancel(task: Task, *, actor: str | None = None) -> Task:
    _require(task, CANCEL_FROM, "cancel")
    return _edited(task, actor, status="cancelled")


def reschedule(
    task: Task,
    new_date: dt.date,
    today: dt.date,
    *,
    actor: str | None = None,
) -> Task:
    _require(task, RESCHEDULE_FROM, "reschedule")
    moved = _edited(task, actor, scheduled_date=new_date)
    return normalize(moved, today)


def transition(
    task: Task,
    target: str,
    today: dt.date,
    *,
    actor: str | None = None,
) -> Task:
    """Apply the transition that leads to ``target``."""
    if target == "in_progress":
        return start(task, actor=actor)
    if target == "completed":
        return complete(task, today, actor=actor)
    if target == "cancelled":
        return cancel(task, actor=actor)
    if target == "overdue":
        raise InvalidTransitionError("overdue is derived from the scheduled date and cannot be set")
    if target in VALID_STATUSES:
        raise InvalidTransitionError(f"Cannot move task {task.task_id} to '{target}'")
    raise InvalidTransitionError(f"Unknown status: {target}")


def days_until(task: Task, today: dt.date) -> int:
    """Signed number of days from ``today`` to the scheduled date."""
    return (task.scheduled_date - today).days
