"""Month grid projection of a task set."""

from __future__ import annotations

from dataclasses import dataclass, field
import datetime as dt
from typing import Iterable

from .models import Task, TaskValidationError

PRIORITY_RANK = {"urgent": 0, "high": 1, "medium": 2, "low": 3}


@dataclass(slots=True)
class DayCell:
    date: dt.date
    day_of_week: int
    day_of_month: int
    is_today: bool
    is_in_target_month: bool
    tasks: list[Task] = field(default_factory=list)

    @property
    def has_tasks(self) -> bool:
        return bool(self.tasks)

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "is_today": self.is_today,
            "is_in_target_month": self.is_in_target_month,
            "has_tasks": self.has_tasks,
            "tasks": [task.to_dict() for task in self.tasks],
        }


@dataclass(slots=True)
class MonthView:
    year: int
    month: int
    days: list[DayCell]

    def weeks(self) -> list[list[DayCell]]:
        return [self.days[index : index + 7] for index in range(0, len(self.days), 7)]

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "month": self.month,
            "days": [cell.to_dict() for cell in self.days],
        }


def sunday_index(value: dt.date) -> int:
    """Day of week with Sunday as 0."""
    return (value.weekday() + 1) % 7


def _day_sort_key(task: Task) -> tuple[str, int, str]:
    return (task.scheduled_time or "99:99", PRIORITY_RANK.get(task.priority, 99), task.title)


def month_bounds(year: int, month: int) -> tuple[dt.date, dt.date]:
    """First and last date shown in the grid for ``year``/``month``."""
    if not 1 <= month <= 12:
        raise TaskValidationError(f"month must be between 1 and 12, got {month}")
    try:
        first = dt.date(year, month, 1)
    except ValueError as exc:
        raise TaskValidationError(f"Invalid year: {year}") from exc
    following = dt.date(year + 1, 1, 1) if month == 12 else dt.date(year, month + 1, 1)
    last = following - dt.timedelta(days=1)
    grid_start = first - dt.timedelta(days=sunday_index(first))
    grid_end = last + dt.timedelta(days=6 - sunday_index(last))
    return grid_start, grid_end


def build_month(
    year: int,
    month: int,
    tasks: Iterable[Task],
    today: dt.date | None = None,
) -> MonthView:
    grid_start, grid_end = month_bounds(year, month)
    today = today or dt.date.today()

    by_date: dict[dt.date, list[Task]] = {}
    for task in tasks:
        if grid_start <= task.scheduled_date <= grid_end:
            by_date.setdefault(task.scheduled_date, []).append(task)

    days: list[DayCell] = []
    current = grid_start
    while current <= grid_end:
        days.append(
            DayCell(
                date=current,
                day_of_week=sunday_index(current),
                day_of_month=current.day,
                is_today=current == today,
                is_in_target_month=current.month == month,
                tasks=sorted(by_date.get(current, []), key=_day_sort_key),
            )
        )
        current += dt.timedelta(days=1)
    return MonthView(year=year, month=month, days=days)
