from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest
import yaml

from crop_planner import recurrence, storage
from crop_planner.models import (
    InvalidTransitionError,
    TaskFilter,
    TaskNotFoundError,
    TaskValidationError,
)
from crop_planner.service import PlanningService, parse_frequency, utc_now

TODAY = dt.date(2024, 1, 1)
NOW = dt.datetime(2024, 1, 1, 8, 0)
UTC = dt.timezone.utc


def _service(tmp_path: Path) -> PlanningService:
    service = PlanningService(tmp_path / ".crop-planner")
    service.ensure_layout()
    return service


def _create(service: PlanningService, title: str = "Water beds", **kwargs):
    values = {
        "crop_id": "tomatoes",
        "title": title,
        "kind": "watering",
        "scheduled_date": TODAY,
        "today": TODAY,
        "now": NOW,
    }
    values.update(kwargs)
    crop_id = values.pop("crop_id")
    title = values.pop("title")
    kind = values.pop("kind")
    scheduled = values.pop("scheduled_date")
    return service.create_task(crop_id, title, kind, scheduled, **values)


def test_create_task_assigns_id_and_series(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service, scheduled_time="07:30", created_by="ana@example.com")
    assert task.task_id == "t-20240101-001"
    assert task.series_id == task.task_id
    assert task.status == "pending"
    assert task.created_at == NOW
    assert task.last_edited_by == "ana@example.com"
    assert service.get_task(task.task_id, today=TODAY) == task
    assert _create(service).task_id == "t-20240101-002"


def test_create_rejects_overdue_and_terminal_status(tmp_path: Path) -> None:
    service = _service(tmp_path)
    with pytest.raises(InvalidTransitionError):
        _create(service, status="overdue")
    with pytest.raises(TaskValidationError):
        _create(service, status="completed")
    assert storage.load_tasks(service.root) == []


def test_create_validation_error_writes_nothing(tmp_path: Path) -> None:
    service = _service(tmp_path)
    with pytest.raises(TaskValidationError):
        _create(service, title="")
    with pytest.raises(TaskValidationError):
        _create(service, frequency="custom")
    assert storage.load_tasks(service.root) == []


def test_reminder_minutes_default_from_config(tmp_path: Path) -> None:
    service = _service(tmp_path)
    (service.root / "config.yaml").write_text("settings:\n  default_reminder_minutes: 15\n", encoding="utf-8")
    task = _create(service, reminder=True)
    assert task.reminder.enabled is True
    assert task.reminder.minutes_before == 15
    explicit = _create(service, reminder=True, reminder_minutes=90)
    assert explicit.reminder.minutes_before == 90


def test_past_task_loads_as_overdue_but_is_stored_pending(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service, scheduled_date=dt.date(2023, 12, 20))
    assert task.status == "overdue"
    raw = yaml.safe_load(storage.task_path(service.root, task.task_id).read_text(encoding="utf-8"))
    assert raw["status"] == "pending"
    assert service.get_task(task.task_id, today=dt.date(2023, 12, 19)).status == "pending"


def test_complete_recurring_task_creates_successor(tmp_path: Path) -> None:
    service = _service(tmp_path)
    root = _create(service, frequency="weekly", reminder=True, reminder_minutes=30)
    result = service.complete_task(root.task_id, today=TODAY, now=NOW)
    assert result.task.status == "completed"
    assert result.task.completed_date == TODAY
    successor = result.successor
    assert successor is not None
    assert successor.scheduled_date == dt.date(2024, 1, 8)
    assert successor.parent_task_id == root.task_id
    assert successor.series_id == root.task_id
    assert successor.reminder.sent is False
    assert service.get_task(successor.task_id, today=TODAY) == successor

    follow = service.complete_task(successor.task_id, today=dt.date(2024, 1, 8), now=NOW)
    assert follow.successor is not None
    assert follow.successor.scheduled_date == dt.date(2024, 1, 15)
    assert follow.successor.parent_task_id == root.task_id


def test_successor_is_not_duplicated(tmp_path: Path) -> None:
    service = _service(tmp_path)
    root = _create(service, frequency="daily")
    result = service.complete_task(root.task_id, today=TODAY, now=NOW)
    assert result.successor is not None
    again = service.generate_next_occurrence(result.task, today=TODAY, now=NOW)
    assert again is None
    series = [task for task in storage.load_tasks(service.root) if task.root_id == root.task_id]
    assert len(series) == 2


def test_recurrence_failure_does_not_undo_completion(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    service = _service(tmp_path)
    root = _create(service, frequency="weekly")

    def boom(*args, **kwargs):
        raise RuntimeError("storage hiccup")

    monkeypatch.setattr(recurrence, "generate_next_occurrence", boom)
    with caplog.at_level("ERROR", logger="crop_planner.service"):
        result = service.complete_task(root.task_id, today=TODAY, now=NOW)
    assert result.successor is None
    assert service.get_task(root.task_id, today=TODAY).status == "completed"
    assert "Recurrence generation failed" in caplog.text


def test_series_ends_at_repeat_until(tmp_path: Path) -> None:
    service = _service(tmp_path)
    root = _create(service, frequency="weekly", repeat_until=dt.date(2024, 1, 5))
    result = service.complete_task(root.task_id, today=TODAY, now=NOW)
    assert result.successor is None


def test_child_with_missing_root_does_not_spawn(tmp_path: Path) -> None:
    service = _service(tmp_path)
    root = _create(service, frequency="weekly")
    child = service.complete_task(root.task_id, today=TODAY, now=NOW).successor
    assert child is not None
    service.delete_task(root.task_id, hard=True)
    result = service.complete_task(child.task_id, today=dt.date(2024, 1, 8), now=NOW)
    assert result.task.status == "completed"
    assert result.successor is None


def test_lifecycle_commands(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service)
    started = service.start_task(task.task_id, actor="ben", today=TODAY, now=NOW)
    assert started.status == "in_progress"
    assert started.last_edited_by == "ben"
    with pytest.raises(InvalidTransitionError):
        service.start_task(task.task_id, today=TODAY, now=NOW)
    cancelled = service.cancel_task(task.task_id, today=TODAY, now=NOW)
    assert cancelled.status == "cancelled"
    with pytest.raises(InvalidTransitionError):
        service.complete_task(task.task_id, today=TODAY, now=NOW)


def test_overdue_task_is_unblocked_by_reschedule(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service, reminder=True, reminder_minutes=30)
    later = dt.date(2024, 1, 5)
    with pytest.raises(InvalidTransitionError):
        service.complete_task(task.task_id, today=later, now=NOW)
    service.mark_reminders_sent([task.task_id], now=NOW)
    moved = service.reschedule_task(task.task_id, dt.date(2024, 1, 6), today=later, now=NOW)
    assert moved.status == "pending"
    assert moved.reminder.sent is False
    assert service.complete_task(task.task_id, today=later, now=NOW).task.status == "completed"


def test_update_task_fields(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service, frequency="weekly", scheduled_time="08:00")
    updated = service.update_task(
        task.task_id,
        title="Deep water",
        priority="high",
        notes="Use the drip line",
        scheduled_time=None,
        frequency=None,
        actor="ana",
        today=TODAY,
        now=NOW,
    )
    assert updated.title == "Deep water"
    assert updated.priority == "high"
    assert updated.notes == "Use the drip line"
    assert updated.scheduled_time is None
    assert updated.is_recurring is False
    assert updated.recurrence is None
    assert updated.last_edited_by == "ana"


def test_update_rejects_invalid_values(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service)
    with pytest.raises(TaskValidationError):
        service.update_task(task.task_id, scheduled_time="25:00", today=TODAY, now=NOW)
    assert service.get_task(task.task_id, today=TODAY).scheduled_time is None


def test_filters_and_sorting(tmp_path: Path) -> None:
    service = _service(tmp_path)
    _create(service, "Water tomatoes", priority="low", scheduled_date=dt.date(2024, 1, 3))
    _create(service, "Harvest basil", crop_id="basil", kind="harvest", priority="urgent")
    _create(service, "Feed tomatoes", kind="fertilizing", frequency="weekly", scheduled_date=dt.date(2024, 1, 2))

    tomatoes = service.list_tasks(TaskFilter(crop_id="tomatoes"), today=TODAY)
    assert [task.title for task in tomatoes] == ["Feed tomatoes", "Water tomatoes"]

    by_priority = service.list_tasks(TaskFilter(sort_by="priority"), today=TODAY)
    assert by_priority[0].title == "Harvest basil"

    recurring = service.list_tasks(TaskFilter(is_recurring=True), today=TODAY)
    assert [task.title for task in recurring] == ["Feed tomatoes"]

    ranged = service.list_tasks(
        TaskFilter(date_from=dt.date(2024, 1, 2), date_to=dt.date(2024, 1, 2)),
        today=TODAY,
    )
    assert [task.title for task in ranged] == ["Feed tomatoes"]

    found = service.list_tasks(TaskFilter(query="BASIL"), today=TODAY)
    assert [task.crop_id for task in found] == ["basil"]

    newest = service.list_tasks(TaskFilter(sort_by="title", descending=True), today=TODAY)
    assert [task.title for task in newest] == ["Water tomatoes", "Harvest basil", "Feed tomatoes"]

    with pytest.raises(TaskValidationError):
        service.list_tasks(TaskFilter(sort_by="colour"), today=TODAY)


def test_status_filter_sees_derived_overdue(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service)
    overdue = service.list_tasks(TaskFilter(status="overdue"), today=dt.date(2024, 1, 2))
    assert [item.task_id for item in overdue] == [task.task_id]


def test_duplicate_task(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = _create(service, frequency="weekly", description="Morning round")
    copy = service.duplicate_task(source.task_id, dt.date(2024, 2, 1), today=TODAY, now=NOW)
    assert copy.task_id != source.task_id
    assert copy.title == "Water beds (copy)"
    assert copy.scheduled_date == dt.date(2024, 2, 1)
    assert copy.description == "Morning round"
    assert copy.is_recurring is False
    assert copy.parent_task_id is None
    assert copy.series_id == copy.task_id


def test_delete_task_soft_and_hard(tmp_path: Path) -> None:
    service = _service(tmp_path)
    first = _create(service)
    second = _create(service)
    service.delete_task(first.task_id)
    assert (service.root / "trash" / f"{first.task_id}.yaml").exists()
    service.delete_task(second.task_id, hard=True)
    assert storage.load_tasks(service.root) == []
    with pytest.raises(TaskNotFoundError):
        service.delete_task(second.task_id)


def test_scan_and_mark_reminders(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service, scheduled_date=dt.date(2024, 1, 10), scheduled_time="10:00", reminder=True, reminder_minutes=30)
    _create(service, "No reminder", scheduled_date=dt.date(2024, 1, 10))

    early = service.scan_due_reminders(dt.datetime(2024, 1, 10, 9, 29, tzinfo=UTC))
    assert early.due == []
    scan = service.scan_due_reminders(dt.datetime(2024, 1, 10, 9, 30, tzinfo=UTC))
    assert [item.task_id for item in scan.due] == [task.task_id]

    first = service.mark_reminders_sent([task.task_id, "t-missing"], now=dt.datetime(2024, 1, 10, 9, 31))
    assert [item.task_id for item in first.marked] == [task.task_id]
    assert first.skipped == ["t-missing"]

    second = service.mark_reminders_sent([task.task_id], now=dt.datetime(2024, 1, 10, 9, 32))
    assert second.marked == []
    assert second.skipped == [task.task_id]

    assert service.scan_due_reminders(dt.datetime(2024, 1, 10, 12, 0, tzinfo=UTC)).due == []


def test_build_month_view_filters_crop(tmp_path: Path) -> None:
    service = _service(tmp_path)
    _create(service, scheduled_date=dt.date(2024, 1, 15))
    _create(service, "Harvest basil", crop_id="basil", scheduled_date=dt.date(2024, 1, 15))
    view = service.build_month_view(2024, 1, crop_id="basil", today=TODAY)
    cell = next(day for day in view.days if day.date == dt.date(2024, 1, 15))
    assert [task.title for task in cell.tasks] == ["Harvest basil"]
    assert view.days[0].date == dt.date(2023, 12, 31)


def test_get_statistics_uses_config_window(tmp_path: Path) -> None:
    service = _service(tmp_path)
    (service.root / "config.yaml").write_text("settings:\n  stats_window_days: 2\n", encoding="utf-8")
    done = _create(service)
    service.complete_task(done.task_id, today=TODAY, now=NOW)
    _create(service, scheduled_date=dt.date(2024, 1, 2))
    _create(service, scheduled_date=dt.date(2024, 1, 5))

    summary = service.get_statistics(today=TODAY)
    assert summary.window_end == dt.date(2024, 1, 3)
    assert summary.total == 2
    assert summary.completed == 1
    assert summary.productivity == 50

    wide = service.get_statistics(today=TODAY, window_days=7)
    assert wide.total == 3
    with pytest.raises(TaskValidationError):
        service.get_statistics(today=TODAY, window_days=-1)


def test_parse_frequency() -> None:
    assert parse_frequency(" Weekly ") == "weekly"
    assert parse_frequency(None) is None
    with pytest.raises(TaskValidationError):
        parse_frequency("hourly")


def test_open_successor_in_progress_is_not_duplicated(tmp_path: Path) -> None:
    service = _service(tmp_path)
    root = _create(service, frequency="weekly")
    result = service.complete_task(root.task_id, today=TODAY, now=NOW)
    assert result.successor is not None
    started = service.start_task(result.successor.task_id, today=TODAY, now=NOW)
    assert started.status == "in_progress"

    assert service.generate_next_occurrence(result.task, today=TODAY, now=NOW) is None
    series = [task for task in storage.load_tasks(service.root) if task.root_id == root.task_id]
    assert len(series) == 2


def test_update_clears_repeat_until(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service, frequency="weekly", repeat_until=dt.date(2024, 2, 1))
    updated = service.update_task(task.task_id, repeat_until=None, today=TODAY, now=NOW)
    assert updated.recurrence is not None
    assert updated.recurrence.frequency == "weekly"
    assert updated.recurrence.repeat_until is None
    assert service.get_task(task.task_id, today=TODAY).recurrence.repeat_until is None

    extended = service.update_task(task.task_id, repeat_until=dt.date(2024, 3, 1), today=TODAY, now=NOW)
    assert extended.recurrence.repeat_until == dt.date(2024, 3, 1)


def test_update_recurrence_fields_on_one_off_task_is_rejected(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = _create(service)
    with pytest.raises(TaskValidationError, match="does not repeat"):
        service.update_task(task.task_id, repeat_until=dt.date(2024, 2, 1), today=TODAY, now=NOW)
    assert service.get_task(task.task_id, today=TODAY).recurrence is None


def test_utc_now_is_aware() -> None:
    stamp = utc_now()
    assert stamp.utcoffset() == dt.timedelta(0)
    assert abs(dt.datetime.now(dt.timezone.utc) - stamp) < dt.timedelta(seconds=5)


def test_created_at_sort_handles_naive_and_aware_records(tmp_path: Path) -> None:
    service = _service(tmp_path)
    older = _create(service, "Old record")
    newer = _create(service, "New record", now=None)
    assert older.created_at.tzinfo is None
    assert newer.created_at.utcoffset() == dt.timedelta(0)

    listed = service.list_tasks(TaskFilter(sort_by="created_at"), today=TODAY)
    assert [task.task_id for task in listed] == [older.task_id, newer.task_id]


@pytest.mark.parametrize("bad_line", ["reminder: true\n", "scheduled_date: 2024-13-01\n"])
def test_malformed_record_does_not_break_reads(tmp_path: Path, bad_line: str) -> None:
    service = _service(tmp_path)
    task = _create(service, scheduled_date=dt.date(2024, 1, 10), scheduled_time="10:00", reminder=True, reminder_minutes=30)
    lines = ["task_id: t-bad\n", "crop_id: tomatoes\n", "title: Broken\n", "kind: watering\n"]
    if not bad_line.startswith("scheduled_date"):
        lines.append("scheduled_date: 2024-01-10\n")
    lines.append(bad_line)
    (service.root / "tasks" / "t-bad.yaml").write_text("".join(lines), encoding="utf-8")

    scan = service.scan_due_reminders(dt.datetime(2024, 1, 10, 9, 30, tzinfo=UTC))
    assert [item.task_id for item in scan.due] == [task.task_id]
    assert [item.task_id for item in service.list_tasks(today=TODAY)] == [task.task_id]
    assert service.get_statistics(today=TODAY, window_days=30).total == 1
