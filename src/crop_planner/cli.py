"""CLI entrypoint for crop-planner."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
import sys
from typing import Annotated

import click
import typer

from . import render, storage
from .logging_setup import setup_logging
from .models import VALID_KINDS, VALID_PRIORITIES, VALID_STATUSES, TaskError, TaskFilter, TaskValidationError
from .service import SORT_KEYS, PlanningService, parse_frequency, utc_now

logger = logging.getLogger(__name__)

RootOption = Annotated[Path | None, typer.Option("--root", help="Explicit .crop-planner path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Emit JSON")]
TodayOption = Annotated[
    str | None,
    typer.Option("--today", help="Treat this YYYY-MM-DD date as today", show_default=False),
]
ActorOption = Annotated[str | None, typer.Option("--by", help="Who is making the change")]
KIND_CHOICE = click.Choice(VALID_KINDS)
PRIORITY_CHOICE = click.Choice(VALID_PRIORITIES)
STATUS_CHOICE = click.Choice(VALID_STATUSES)

app = typer.Typer(help="Plan, schedule and track crop-care tasks", no_args_is_help=True)


def _can_render_rich_output() -> bool:
    return sys.stdout.isatty()


def _print_rich(renderable) -> None:
    from rich.console import Console

    Console().print(renderable)


def _echo_root_notice(root: Path, multiple_found: bool) -> None:
    typer.echo(f"Using planner root: {root}", err=True)
    if multiple_found:
        typer.echo("Warning: multiple .crop-planner roots found; using nearest ancestor.", err=True)


def _warn_config(message: str) -> None:
    typer.echo(f"Warning: {message}", err=True)


def _parse_date(value: str | None, name: str) -> dt.date | None:
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(value.strip())
    except ValueError as exc:
        raise typer.BadParameter(f"{name} must be YYYY-MM-DD, got '{value}'") from exc


def _parse_now(value: str | None) -> dt.datetime | None:
    if value is None:
        return None
    try:
        return dt.datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise typer.BadParameter(f"--now must be an ISO timestamp, got '{value}'") from exc


def _require_date(value: str, name: str) -> dt.date:
    parsed = _parse_date(value, name)
    if parsed is None:
        raise typer.BadParameter(f"{name} is required")
    return parsed


def _resolve_existing_root(root: Path | None) -> Path:
    if root is not None:
        resolved = root.resolve()
        if not resolved.exists():
            raise typer.BadParameter(f"planner root not found: {resolved}")
        return resolved

    found, multiple = storage.choose_root(Path.cwd())
    if found is None:
        raise TaskValidationError(
            "No .crop-planner root found from current directory upward. Run 'crop-planner init' first."
        )
    _echo_root_notice(found, multiple)
    return found


def _resolve_init_root(root: Path | None) -> Path:
    if root is not None:
        return root.resolve()

    found, multiple = storage.choose_root(Path.cwd())
    if found is not None:
        _echo_root_notice(found, multiple)
        return found

    default_root = storage.default_init_root(Path.cwd())
    typer.echo(f"No .crop-planner found. Initializing at: {default_root}", err=True)
    return default_root


def _service(root: Path | None = None, *, init: bool = False) -> PlanningService:
    resolved = _resolve_init_root(root) if init else _resolve_existing_root(root)
    svc = PlanningService(resolved)
    svc.ensure_layout()
    return svc


def _run_and_handle(fn) -> None:
    try:
        fn()
    except TaskError as exc:
        logger.debug("Command failed", exc_info=True)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def root_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log at DEBUG level")] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR", show_default=False),
    ] = None,
    log_file: Annotated[Path | None, typer.Option("--log-file", help="Also write logs here")] = None,
) -> None:
    """Configure logging before any command runs."""
    if verbose:
        level = "DEBUG"
    elif log_level is not None:
        level = log_level.upper()
        if level not in storage.VALID_LOG_LEVELS:
            raise typer.BadParameter(f"--log-level must be one of {', '.join(storage.VALID_LOG_LEVELS)}")
    else:
        found, _ = storage.choose_root(Path.cwd())
        level = storage.resolve_log_level(found, warn=_warn_config) if found else storage.DEFAULT_LOG_LEVEL
    setup_logging(level, log_file=log_file)


@app.command("init")
def init_cmd(root: RootOption = None) -> None:
    """Initialize the .crop-planner directory layout."""

    def _inner() -> None:
        svc = _service(root, init=True)
        cfg_path = storage.config_path(svc.root)
        typer.echo(f"Initialized planner root: {svc.root}")
        if storage.write_default_config_if_missing(svc.root):
            typer.echo(f"Created config: {cfg_path}")
        else:
            typer.echo(f"Using existing config: {cfg_path}")

    _run_and_handle(_inner)


@app.command("create")
def create_cmd(
    title: Annotated[str, typer.Argument(help="Short task title")],
    crop: Annotated[str, typer.Option("--crop", help="Crop the task belongs to")],
    kind: Annotated[str, typer.Option("--kind", click_type=KIND_CHOICE)] = "other",
    date: Annotated[str | None, typer.Option("--date", help="Scheduled date (YYYY-MM-DD), default today")] = None,
    time: Annotated[str | None, typer.Option("--time", help="Scheduled time (HH:MM)")] = None,
    priority: Annotated[str, typer.Option("--priority", click_type=PRIORITY_CHOICE)] = "medium",
    description: Annotated[str | None, typer.Option("--description")] = None,
    duration: Annotated[int | None, typer.Option("--duration", help="Estimated minutes")] = None,
    every: Annotated[
        str | None,
        typer.Option("--every", help="Repeat: daily, weekly, biweekly, monthly, custom"),
    ] = None,
    interval: Annotated[int | None, typer.Option("--interval", help="Days between custom repeats")] = None,
    until: Annotated[str | None, typer.Option("--until", help="Last date of the series")] = None,
    remind: Annotated[bool, typer.Option("--remind", help="Enable a reminder")] = False,
    remind_minutes: Annotated[int | None, typer.Option("--remind-minutes", help="Minutes before")] = None,
    actor: ActorOption = None,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Create a task."""

    def _inner() -> None:
        svc = _service(root)
        today_date = _parse_date(today, "--today") or dt.date.today()
        task = svc.create_task(
            crop,
            title,
            kind,
            _parse_date(date, "--date") or today_date,
            priority=priority,
            description=description,
            scheduled_time=time,
            estimated_duration_minutes=duration,
            frequency=parse_frequency(every),
            custom_interval_days=interval,
            repeat_until=_parse_date(until, "--until"),
            reminder=remind or remind_minutes is not None,
            reminder_minutes=remind_minutes,
            created_by=actor,
            today=today_date,
        )
        typer.echo(f"Created: {task.title} ({task.task_id})")

    _run_and_handle(_inner)


@app.command("list")
def list_cmd(
    crop: Annotated[str | None, typer.Option("--crop")] = None,
    kind: Annotated[str | None, typer.Option("--kind", click_type=KIND_CHOICE)] = None,
    status: Annotated[str | None, typer.Option("--status", click_type=STATUS_CHOICE)] = None,
    priority: Annotated[str | None, typer.Option("--priority", click_type=PRIORITY_CHOICE)] = None,
    date_from: Annotated[str | None, typer.Option("--from", help="Earliest date (YYYY-MM-DD)")] = None,
    date_to: Annotated[str | None, typer.Option("--to", help="Latest date (YYYY-MM-DD)")] = None,
    recurring: Annotated[bool | None, typer.Option("--recurring/--one-off", show_default=False)] = None,
    query: Annotated[str | None, typer.Option("--query", "-q", help="Search title and description")] = None,
    sort: Annotated[str, typer.Option("--sort", click_type=click.Choice(SORT_KEYS))] = "scheduled_date",
    descending: Annotated[bool, typer.Option("--desc")] = False,
    as_json: JsonOption = False,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """List tasks, optionally filtered."""

    def _inner() -> None:
        svc = _service(root)
        task_filter = TaskFilter(
            crop_id=crop,
            kind=kind,
            status=status,
            priority=priority,
            date_from=_parse_date(date_from, "--from"),
            date_to=_parse_date(date_to, "--to"),
            is_recurring=recurring,
            query=query,
            sort_by=sort,
            descending=descending,
        )
        tasks = svc.list_tasks(task_filter, today=_parse_date(today, "--today"))
        if as_json:
            typer.echo(render.render_task_list_json(tasks))
        elif _can_render_rich_output():
            _print_rich(render.render_task_list_rich(tasks))
        else:
            typer.echo(render.render_task_list_plain(tasks))

    _run_and_handle(_inner)


@app.command("view")
def view_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    as_json: JsonOption = False,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Show a detailed view of one task."""

    def _inner() -> None:
        svc = _service(root)
        today_date = _parse_date(today, "--today") or dt.date.today()
        task = svc.get_task(task_id, today=today_date)
        if as_json:
            typer.echo(render.render_task_detail_json(task, today_date))
        elif _can_render_rich_output():
            _print_rich(render.render_task_detail_rich(task, today_date))
        else:
            typer.echo(render.render_task_detail_plain(task, today_date))

    _run_and_handle(_inner)


@app.command("update")
def update_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    title: Annotated[str | None, typer.Option("--title")] = None,
    crop: Annotated[str | None, typer.Option("--crop")] = None,
    kind: Annotated[str | None, typer.Option("--kind", click_type=KIND_CHOICE)] = None,
    priority: Annotated[str | None, typer.Option("--priority", click_type=PRIORITY_CHOICE)] = None,
    description: Annotated[str | None, typer.Option("--description")] = None,
    notes: Annotated[str | None, typer.Option("--notes")] = None,
    time: Annotated[str | None, typer.Option("--time", help="HH:MM, or '' to clear")] = None,
    duration: Annotated[int | None, typer.Option("--duration")] = None,
    every: Annotated[str | None, typer.Option("--every", help="Frequency, or 'none' to stop repeating")] = None,
    interval: Annotated[int | None, typer.Option("--interval")] = None,
    until: Annotated[str | None, typer.Option("--until", help="Last date, or 'none' to repeat forever")] = None,
    remind: Annotated[bool | None, typer.Option("--remind/--no-remind", show_default=False)] = None,
    remind_minutes: Annotated[int | None, typer.Option("--remind-minutes")] = None,
    actor: ActorOption = None,
    root: RootOption = None,
) -> None:
    """Update task fields."""

    def _inner() -> None:
        svc = _service(root)
        extra: dict[str, object] = {}
        if time is not None:
            extra["scheduled_time"] = time
        if duration is not None:
            extra["estimated_duration_minutes"] = duration
        if every is not None:
            extra["frequency"] = None if every.strip().lower() == "none" else parse_frequency(every)
        if interval is not None:
            extra["custom_interval_days"] = interval
        if until is not None:
            extra["repeat_until"] = None if until.strip().lower() == "none" else _parse_date(until, "--until")
        task = svc.update_task(
            task_id,
            title=title,
            crop_id=crop,
            kind=kind,
            priority=priority,
            description=description,
            notes=notes,
            reminder=remind,
            reminder_minutes=remind_minutes,
            actor=actor,
            **extra,
        )
        typer.echo(f"Updated: {task.title} ({task.task_id})")

    _run_and_handle(_inner)


@app.command("start")
def start_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    actor: ActorOption = None,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Move a pending task to in_progress."""

    def _inner() -> None:
        svc = _service(root)
        task = svc.start_task(task_id, actor=actor, today=_parse_date(today, "--today"))
        typer.echo(f"Started: {task.title} ({task.task_id})")

    _run_and_handle(_inner)


@app.command("complete")
def complete_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    actor: ActorOption = None,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Mark a task completed and schedule the next one of its series."""

    def _inner() -> None:
        svc = _service(root)
        result = svc.complete_task(task_id, actor=actor, today=_parse_date(today, "--today"))
        typer.echo(f"Completed: {result.task.title} ({result.task.task_id})")
        if result.successor is not None:
            typer.echo(
                f"Next: {result.successor.task_id} on {result.successor.scheduled_date.isoformat()}"
            )

    _run_and_handle(_inner)


@app.command("cancel")
def cancel_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    actor: ActorOption = None,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Cancel a pending or in-progress task."""

    def _inner() -> None:
        svc = _service(root)
        task = svc.cancel_task(task_id, actor=actor, today=_parse_date(today, "--today"))
        typer.echo(f"Cancelled: {task.title} ({task.task_id})")

    _run_and_handle(_inner)


@app.command("reschedule")
def reschedule_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    new_date: Annotated[str, typer.Argument(help="New date (YYYY-MM-DD)")],
    actor: ActorOption = None,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Move a task to another date."""

    def _inner() -> None:
        svc = _service(root)
        task = svc.reschedule_task(
            task_id,
            _require_date(new_date, "new_date"),
            actor=actor,
            today=_parse_date(today, "--today"),
        )
        typer.echo(f"Rescheduled: {task.title} ({task.task_id}) -> {task.scheduled_date.isoformat()} [{task.status}]")

    _run_and_handle(_inner)


@app.command("duplicate")
def duplicate_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    new_date: Annotated[str, typer.Argument(help="Date for the copy (YYYY-MM-DD)")],
    actor: ActorOption = None,
    root: RootOption = None,
) -> None:
    """Copy a task to a new date as a one-off task."""

    def _inner() -> None:
        svc = _service(root)
        task = svc.duplicate_task(task_id, _require_date(new_date, "new_date"), actor=actor)
        typer.echo(f"Created: {task.title} ({task.task_id})")

    _run_and_handle(_inner)


@app.command("delete")
def delete_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    hard: Annotated[bool, typer.Option("--hard", help="Permanently remove the task file")] = False,
    root: RootOption = None,
) -> None:
    """Delete a task (soft-delete to trash by default)."""

    def _inner() -> None:
        svc = _service(root)
        svc.delete_task(task_id, hard=hard)
        if hard:
            typer.echo(f"Hard deleted: {task_id}")
        else:
            typer.echo(f"Moved to trash: {task_id}")

    _run_and_handle(_inner)


@app.command("reminders")
def reminders_cmd(
    now: Annotated[
        str | None,
        typer.Option("--now", help="ISO timestamp to scan at (UTC when no offset)", show_default=False),
    ] = None,
    crop: Annotated[str | None, typer.Option("--crop")] = None,
    mark_sent: Annotated[bool, typer.Option("--mark-sent", help="Record the due reminders as sent")] = False,
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """List reminders that are due and not yet sent."""

    def _inner() -> None:
        svc = _service(root)
        scan_at = _parse_now(now) or utc_now()
        scan = svc.scan_due_reminders(scan_at, TaskFilter(crop_id=crop))
        if as_json:
            typer.echo(render.render_reminders_json(scan))
        else:
            typer.echo(render.render_reminders_plain(scan))
        if mark_sent and scan.due:
            result = svc.mark_reminders_sent([task.task_id for task in scan.due], now=scan_at)
            typer.echo(f"Marked sent: {len(result.marked)}", err=True)
            if result.skipped:
                typer.echo(f"Already sent or unavailable: {', '.join(result.skipped)}", err=True)

    _run_and_handle(_inner)


@app.command("calendar")
def calendar_cmd(
    year: Annotated[int | None, typer.Argument(help="Year, default current")] = None,
    month: Annotated[int | None, typer.Argument(help="Month 1-12, default current")] = None,
    crop: Annotated[str | None, typer.Option("--crop")] = None,
    as_json: JsonOption = False,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Show a month calendar of scheduled tasks."""

    def _inner() -> None:
        svc = _service(root)
        today_date = _parse_date(today, "--today") or dt.date.today()
        view = svc.build_month_view(
            year if year is not None else today_date.year,
            month if month is not None else today_date.month,
            crop_id=crop,
            today=today_date,
        )
        if as_json:
            typer.echo(render.render_month_json(view))
        elif _can_render_rich_output():
            _print_rich(render.render_month_rich(view))
        else:
            typer.echo(render.render_month_plain(view))

    _run_and_handle(_inner)


@app.command("stats")
def stats_cmd(
    crop: Annotated[str | None, typer.Option("--crop")] = None,
    window: Annotated[int | None, typer.Option("--window", min=0, help="Days ahead to include")] = None,
    as_json: JsonOption = False,
    today: TodayOption = None,
    root: RootOption = None,
) -> None:
    """Show task statistics for the upcoming window."""

    def _inner() -> None:
        svc = _service(root)
        window_days = window
        if window_days is None:
            window_days = storage.resolve_stats_window_days(svc.root, warn=_warn_config)
        summary = svc.get_statistics(
            crop_id=crop,
            today=_parse_date(today, "--today"),
            window_days=window_days,
        )
        if as_json:
            typer.echo(render.render_stats_json(summary))
        elif _can_render_rich_output():
            _print_rich(render.render_stats_rich(summary))
        else:
            typer.echo(render.render_stats_plain(summary))

    _run_and_handle(_inner)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
