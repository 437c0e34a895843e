"""Renderers for list, detail, calendar and statistics output."""

from __future__ import annotations

import calendar
import datetime as dt
import json
from typing import Iterable

from .calendar_view import MonthView
from .models import Task
from .reminders import ReminderScan, trigger_instant
from .state_machine import days_until
from .stats import PlanningStats

LIST_COLUMNS = (
    ("task_id", 15),
    ("date", 10),
    ("time", 5),
    ("title", 32),
    ("kind", 11),
    ("status", 11),
    ("priority", 8),
    ("crop", 12),
)
WEEKDAY_HEADERS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
CELL_WIDTH = 9


def _priority_style(priority: str) -> str:
    return {
        "urgent": "bold red",
        "high": "bold yellow",
        "medium": "cyan",
        "low": "dim",
    }.get(priority, "white")


def _status_style(status: str) -> str:
    return {
        "pending": "magenta",
        "in_progress": "cyan",
        "completed": "green",
        "cancelled": "dim",
        "overdue": "bold red",
    }.get(status, "white")


def _truncate(value: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(value) <= width:
        return value
    if width == 1:
        return "…"
    return f"{value[: width - 1]}…"


def _recurrence_label(task: Task) -> str:
    if not task.is_recurring or task.recurrence is None:
        return "-"
    rec = task.recurrence
    label = rec.frequency
    if rec.frequency == "custom" and rec.custom_interval_days:
        label = f"every {rec.custom_interval_days}d"
    if rec.repeat_until:
        label += f" until {rec.repeat_until.isoformat()}"
    return label


def _reminder_label(task: Task) -> str:
    reminder = task.reminder
    if not reminder.enabled:
        return "-"
    label = f"{reminder.minutes_before} min before"
    if reminder.sent:
        label += " (sent)"
    return label


def _due_label(task: Task, today: dt.date) -> str:
    delta = days_until(task, today)
    if delta == 0:
        return "today"
    if delta > 0:
        return f"in {delta} day{'s' if delta != 1 else ''}"
    return f"{-delta} day{'s' if delta != -1 else ''} ago"


def _task_list_row(task: Task) -> dict[str, str]:
    return {
        "task_id": task.task_id,
        "date": task.scheduled_date.isoformat(),
        "time": task.scheduled_time or "",
        "title": task.title + (" ↻" if task.is_recurring else ""),
        "kind": task.kind,
        "status": task.status,
        "priority": task.priority,
        "crop": task.crop_id,
    }


def render_task_list_plain(tasks: Iterable[Task]) -> str:
    rows = [_task_list_row(task) for task in tasks]
    if not rows:
        return "No tasks found."

    lines = []
    lines.append("  ".join(name.ljust(width) for name, width in LIST_COLUMNS).rstrip())
    lines.append("  ".join("-" * width for _, width in LIST_COLUMNS))
    for row in rows:
        rendered = [_truncate(row[name], width).ljust(width) for name, width in LIST_COLUMNS]
        lines.append("  ".join(rendered).rstrip())
    return "\n".join(lines)


def render_task_list_rich(tasks: Iterable[Task]):
    from rich import box
    from rich.table import Table
    from rich.text import Text

    task_list = list(tasks)
    if not task_list:
        return "No tasks found."

    table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style="bold white", pad_edge=False)
    for name, width in LIST_COLUMNS:
        table.add_column(
            name,
            style="dim" if name in {"task_id", "crop"} else ("bold" if name == "title" else ""),
            min_width=min(width, 10),
            max_width=width,
            overflow="ellipsis",
            no_wrap=True,
        )
    for task in task_list:
        row = _task_list_row(task)
        rendered: list[str | Text] = []
        for name, _ in LIST_COLUMNS:
            value = row[name]
            if name == "status":
                rendered.append(Text(value, style=_status_style(value)))
            elif name == "priority":
                rendered.append(Text(value, style=_priority_style(value)))
            else:
                rendered.append(value)
        table.add_row(*rendered)
    return table


def render_task_list_json(tasks: Iterable[Task]) -> str:
    return json.dumps([task.to_dict() for task in tasks], indent=2)


def _detail_lines(task: Task, today: dt.date) -> list[str]:
    when = task.scheduled_date.isoformat()
    if task.scheduled_time:
        when += f" {task.scheduled_time}"
    duration = f"{task.estimated_duration_minutes} min" if task.estimated_duration_minutes else "-"
    lines = [
        f"scheduled: {when} ({_due_label(task, today)})    duration: {duration}",
        f"crop: {task.crop_id}    kind: {task.kind}",
        f"recurrence: {_recurrence_label(task)}    series: {task.root_id}",
        f"reminder: {_reminder_label(task)}",
        (
            f"created: {task.created_at.isoformat() if task.created_at else '-'} "
            f"by {task.created_by or '-'}    "
            f"edited by: {task.last_edited_by or '-'}"
        ),
        f"completed: {task.completed_date.isoformat() if task.completed_date else '-'}",
    ]
    if task.parent_task_id:
        lines.append(f"generated from: {task.parent_task_id}")
    return lines


def render_task_detail_plain(task: Task, today: dt.date) -> str:
    lines = [
        f"{task.title} ({task.task_id})",
        f"[{task.status}] [{task.priority}]",
        *_detail_lines(task, today),
    ]
    if task.description:
        lines.extend(["", task.description.strip()])
    if task.notes:
        lines.extend(["", "notes:", task.notes.strip()])
    return "\n".join(lines)


def render_task_detail_rich(task: Task, today: dt.date):
    from rich.console import Group
    from rich.text import Text

    title = Text()
    title.append(task.title, style="bold")
    title.append(f" ({task.task_id})", style="dim")

    chips = Text()
    chips.append(f"[{task.status}]", style=_status_style(task.status))
    chips.append(" ")
    chips.append(f"[{task.priority}]", style=_priority_style(task.priority))

    renderables = [title, chips, *(Text(line) for line in _detail_lines(task, today))]
    if task.description:
        renderables.extend([Text(""), Text(task.description.strip())])
    if task.notes:
        renderables.extend([Text(""), Text("notes:", style="bold"), Text(task.notes.strip())])
    return Group(*renderables)


def render_task_detail_json(task: Task, today: dt.date) -> str:
    payload = task.to_dict()
    payload["days_until"] = days_until(task, today)
    return json.dumps(payload, indent=2)


def _cell_lines(cell) -> list[str]:
    marker = "*" if cell.is_today else " "
    day = f"{cell.day_of_month:>2}{marker}"
    if not cell.is_in_target_month:
        day = f"({cell.day_of_month:>2})"
    count = f"{len(cell.tasks)}t" if cell.tasks else ""
    return [day.ljust(CELL_WIDTH), count.ljust(CELL_WIDTH)]


def render_month_plain(view: MonthView) -> str:
    title = f"{calendar.month_name[view.month]} {view.year}"
    width = (CELL_WIDTH + 1) * 7 - 1
    lines = [title.center(width).rstrip(), " ".join(h.ljust(CELL_WIDTH) for h in WEEKDAY_HEADERS).rstrip()]
    for week in view.weeks():
        cells = [_cell_lines(cell) for cell in week]
        lines.append(" ".join(cell[0] for cell in cells).rstrip())
        lines.append(" ".join(cell[1] for cell in cells).rstrip())

    agenda = [cell for cell in view.days if cell.tasks]
    if agenda:
        lines.append("")
        for cell in agenda:
            for task in cell.tasks:
                time_label = task.scheduled_time or "--:--"
                lines.append(
                    f"{cell.date.isoformat()} {time_label}  {task.title} [{task.status}] ({task.task_id})"
                )
    return "\n".join(lines)


def render_month_rich(view: MonthView):
    from rich import box
    from rich.table import Table
    from rich.text import Text

    table = Table(
        title=f"{calendar.month_name[view.month]} {view.year}",
        box=box.SQUARE,
        show_lines=True,
        header_style="bold white",
    )
    for header in WEEKDAY_HEADERS:
        table.add_column(header, min_width=CELL_WIDTH, vertical="top")

    for week in view.weeks():
        row: list[Text] = []
        for cell in week:
            text = Text()
            day_style = "bold reverse" if cell.is_today else ("" if cell.is_in_target_month else "dim")
            text.append(str(cell.day_of_month), style=day_style)
            for task in cell.tasks:
                text.append("\n")
                text.append(_truncate(task.title, CELL_WIDTH), style=_status_style(task.status))
            row.append(text)
        table.add_row(*row)
    return table


def render_month_json(view: MonthView) -> str:
    return json.dumps(view.to_dict(), indent=2)


STATS_ROWS = (
    ("total", "total"),
    ("pending", "pending"),
    ("in_progress", "in progress"),
    ("completed", "completed"),
    ("cancelled", "cancelled"),
    ("overdue", "overdue"),
    ("due_today", "due today"),
    ("recurring", "recurring"),
)


def render_stats_plain(summary: PlanningStats) -> str:
    data = summary.to_dict()
    width = max(len(label) for _, label in STATS_ROWS)
    lines = [f"window: {data['window_start']} .. {data['window_end']}"]
    for key, label in STATS_ROWS:
        lines.append(f"{label.ljust(width)}  {data[key]}")
    lines.append(f"{'productivity'.ljust(width)}  {summary.productivity}%")
    return "\n".join(lines)


def render_stats_rich(summary: PlanningStats):
    from rich import box
    from rich.table import Table

    data = summary.to_dict()
    table = Table(
        title=f"{data['window_start']} .. {data['window_end']}",
        box=box.SIMPLE_HEAVY,
        show_header=False,
        pad_edge=False,
    )
    table.add_column("metric", style="bold")
    table.add_column("value", justify="right")
    for key, label in STATS_ROWS:
        table.add_row(label, str(data[key]))
    table.add_row("productivity", f"{summary.productivity}%")
    return table


def render_stats_json(summary: PlanningStats) -> str:
    return json.dumps(summary.to_dict(), indent=2)


def render_reminders_plain(scan: ReminderScan) -> str:
    if not scan.due and not scan.skipped:
        return "No reminders due."
    lines = []
    for task in scan.due:
        at = trigger_instant(task).strftime("%Y-%m-%d %H:%M")
        lines.append(f"{at}  {task.title} ({task.task_id}) [{task.crop_id}]")
    for task_id, reason in scan.skipped:
        lines.append(f"skipped {task_id}: {reason}")
    return "\n".join(lines)


def render_reminders_json(scan: ReminderScan) -> str:
    payload = {
        "due": [
            {**task.to_dict(), "trigger_at": trigger_instant(task).isoformat()}
            for task in scan.due
        ],
        "skipped": [{"task_id": task_id, "reason": reason} for task_id, reason in scan.skipped],
    }
    return json.dumps(payload, indent=2)
