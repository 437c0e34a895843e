"""Rollup counts over a task set."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import datetime as dt
import math
from typing import Any, Iterable

from .models import Task

DEFAULT_WINDOW_DAYS = 7


@dataclass(slots=True, frozen=True)
class PlanningStats:
    window_start: dt.date
    window_end: dt.date
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    overdue: int = 0
    due_today: int = 0
    recurring: int = 0
    productivity: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["window_start"] = self.window_start.isoformat()
        data["window_end"] = self.window_end.isoformat()
        return data


def _is_overdue(task: Task, today: dt.date) -> bool:
    if task.status == "overdue":
        return True
    return task.status == "pending" and task.scheduled_date < today


def productivity(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # Half-up rounding, not Python's round-half-even.
    return math.floor(completed * 100 / total + 0.5)


def summarize(
    tasks: Iterable[Task],
    today: dt.date,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> PlanningStats:
    """Count tasks scheduled in ``[today, today + window_days]``.

    Statuses are counted as presented; callers normalize records first so
    that overdue tasks already carry the derived status.
    """
    window_end = today + dt.timedelta(days=max(window_days, 0))
    window = [task for task in tasks if today <= task.scheduled_date <= window_end]

    overdue = sum(1 for task in window if _is_overdue(task, today))
    pending = sum(1 for task in window if task.status == "pending" and not _is_overdue(task, today))
    completed = sum(1 for task in window if task.status == "completed")
    total = len(window)
    return PlanningStats(
        window_start=today,
        window_end=window_end,
        total=total,
        pending=pending,
        in_progress=sum(1 for task in window if task.status == "in_progress"),
        completed=completed,
        cancelled=sum(1 for task in window if task.status == "cancelled"),
        overdue=overdue,
        due_today=sum(1 for task in window if task.scheduled_date == today),
        recurring=sum(1 for task in window if task.is_recurring),
        productivity=productivity(completed, total),
    )
