"""Filesystem storage and YAML IO for crop-planner."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Any, Callable, Iterable

import yaml

from .models import REMINDER_MINUTES_RANGE, Task, TaskConflictError, TaskNotFoundError, TaskValidationError
from .state_machine import stored_status

logger = logging.getLogger(__name__)

ROOT_DIR_NAME = ".crop-planner"
TASKS_DIR = "tasks"
TRASH_DIR = "trash"
TASK_SUFFIX = ".yaml"

DEFAULT_STATS_WINDOW_DAYS = 7
DEFAULT_REMINDER_MINUTES = 60
DEFAULT_LOG_LEVEL = "WARNING"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
SUPPORTED_SETTINGS_KEYS = {"stats_window_days", "default_reminder_minutes", "log_level"}


def find_repo_root(start: Path) -> Path | None:
    start = start.resolve()
    for candidate in [start, *start.parents]:
        git_dir = candidate / ".git"
        if git_dir.exists():
            return candidate
    return None


def discover_roots(start: Path) -> list[Path]:
    start = start.resolve()
    roots: list[Path] = []
    for candidate in [start, *start.parents]:
        planner_dir = candidate / ROOT_DIR_NAME
        if planner_dir.is_dir():
            roots.append(planner_dir)
    return roots


def choose_root(start: Path) -> tuple[Path | None, bool]:
    roots = discover_roots(start)
    if not roots:
        return None, False
    return roots[0], len(roots) > 1


def default_init_root(start: Path) -> Path:
    repo_root = find_repo_root(start)
    base = repo_root if repo_root is not None else start.resolve()
    return base / ROOT_DIR_NAME


def ensure_layout(root: Path) -> None:
    for name in (TASKS_DIR, TRASH_DIR):
        (root / name).mkdir(parents=True, exist_ok=True)


def config_path(root: Path) -> Path:
    return root / "config.yaml"


def default_config(
    *,
    stats_window_days: int = DEFAULT_STATS_WINDOW_DAYS,
    default_reminder_minutes: int = DEFAULT_REMINDER_MINUTES,
    log_level: str = DEFAULT_LOG_LEVEL,
) -> dict[str, Any]:
    return {
        "settings": {
            "stats_window_days": stats_window_days,
            "default_reminder_minutes": default_reminder_minutes,
            "log_level": log_level,
        }
    }


def write_default_config_if_missing(root: Path) -> bool:
    path = config_path(root)
    if path.exists():
        return False
    payload = yaml.safe_dump(default_config(), sort_keys=False, default_flow_style=False)
    path.write_text(payload, encoding="utf-8")
    return True


def read_config(root: Path, warn: Callable[[str], None] | None = None) -> dict[str, Any]:
    path = config_path(root)
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError:
        if warn is not None:
            warn(f"Unable to parse config at {path}. Falling back to defaults.")
        return {}
    if not isinstance(payload, dict):
        if warn is not None:
            warn(f"Invalid config format at {path}. Falling back to defaults.")
        return {}
    return payload


def _settings(root: Path, warn: Callable[[str], None] | None) -> dict[str, Any]:
    data = read_config(root, warn=warn)
    for key in data.keys():
        if key != "settings" and warn is not None:
            warn(f"Unsupported config key '{key}' in {config_path(root)}. Ignoring.")

    settings = data.get("settings", {})
    if not isinstance(settings, dict):
        if warn is not None:
            warn(f"Invalid settings section in {config_path(root)}. Using defaults.")
        return {}

    for key in settings.keys():
        if key not in SUPPORTED_SETTINGS_KEYS and warn is not None:
            warn(f"Unsupported settings key '{key}' in {config_path(root)}. Ignoring.")
    return settings


def _int_setting(
    root: Path,
    key: str,
    default: int,
    bounds: tuple[int, int],
    warn: Callable[[str], None] | None,
) -> int:
    value = _settings(root, warn).get(key)
    if value is None:
        return default
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        if warn is not None:
            warn(f"Invalid settings.{key} in {config_path(root)}. Using default '{default}'.")
        return default
    return value


def resolve_stats_window_days(root: Path, warn: Callable[[str], None] | None = None) -> int:
    return _int_setting(root, "stats_window_days", DEFAULT_STATS_WINDOW_DAYS, (0, 366), warn)


def resolve_default_reminder_minutes(root: Path, warn: Callable[[str], None] | None = None) -> int:
    return _int_setting(
        root,
        "default_reminder_minutes",
        DEFAULT_REMINDER_MINUTES,
        REMINDER_MINUTES_RANGE,
        warn,
    )


def resolve_log_level(root: Path, warn: Callable[[str], None] | None = None) -> str:
    value = _settings(root, warn).get("log_level")
    if value is None:
        return DEFAULT_LOG_LEVEL
    level = str(value).upper()
    if level not in VALID_LOG_LEVELS:
        if warn is not None:
            warn(f"Invalid settings.log_level in {config_path(root)}. Using default '{DEFAULT_LOG_LEVEL}'.")
        return DEFAULT_LOG_LEVEL
    return level


def task_path(root: Path, task_id: str, *, trash: bool = False) -> Path:
    bucket = TRASH_DIR if trash else TASKS_DIR
    return root / bucket / f"{task_id}{TASK_SUFFIX}"


def render_task(task: Task) -> str:
    data = task.to_dict()
    data["status"] = stored_status(task)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def parse_task(path: Path) -> Task:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except ValueError as exc:
        # PyYAML raises ValueError for timestamps like 2024-13-01.
        raise TaskValidationError(f"Task file {path} has an invalid value: {exc}") from exc
    if not isinstance(data, dict):
        raise TaskValidationError(f"Task file {path} does not contain a mapping")
    return Task.from_dict(data)


def iter_task_files(root: Path, include_trash: bool = False) -> list[Path]:
    buckets = [TASKS_DIR]
    if include_trash:
        buckets.append(TRASH_DIR)
    files: list[Path] = []
    for bucket in buckets:
        bucket_dir = root / bucket
        if not bucket_dir.exists():
            continue
        files.extend(sorted(bucket_dir.glob(f"*{TASK_SUFFIX}")))
    return files


def load_tasks(root: Path, include_trash: bool = False) -> list[Task]:
    tasks: list[Task] = []
    for path in iter_task_files(root, include_trash=include_trash):
        try:
            tasks.append(parse_task(path))
        except (yaml.YAMLError, ValueError, TaskValidationError) as exc:
            logger.warning("Skipping unreadable task file %s: %s", path, exc)
    return tasks


def find_task(root: Path, task_id: str) -> Task:
    path = task_path(root, task_id)
    if not path.exists():
        raise TaskNotFoundError(f"Task not found: {task_id}")
    return parse_task(path)


def write_task(root: Path, task: Task) -> Task:
    path = task_path(root, task.task_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_task(task), encoding="utf-8")
    logger.debug("Wrote task %s to %s", task.task_id, path)
    return task


def write_tasks(root: Path, tasks: Iterable[Task]) -> int:
    count = 0
    for task in tasks:
        write_task(root, task)
        count += 1
    return count


def next_task_id(root: Path, created_date: str) -> str:
    ymd = created_date.replace("-", "")
    prefix = f"t-{ymd}-"
    max_seq = 0
    for path in iter_task_files(root, include_trash=True):
        task_id = path.stem
        if task_id.startswith(prefix):
            try:
                seq = int(task_id[len(prefix) :].split("-")[0])
            except ValueError:
                continue
            max_seq = max(max_seq, seq)
    return f"{prefix}{max_seq + 1:03d}"


def ensure_new_task_id(root: Path, task_id: str) -> None:
    if task_path(root, task_id).exists() or task_path(root, task_id, trash=True).exists():
        raise TaskConflictError(f"Task id already exists: {task_id}")


def move_to_trash(root: Path, task_id: str) -> Path:
    source = task_path(root, task_id)
    if not source.exists():
        raise TaskNotFoundError(f"Task not found: {task_id}")
    target = task_path(root, task_id, trash=True)
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        suffix = dt.datetime.now().strftime("%H%M%S")
        target = target.with_name(f"{task_id}-{suffix}{TASK_SUFFIX}")
    source.rename(target)
    return target


def hard_delete(root: Path, task_id: str) -> None:
    path = task_path(root, task_id)
    if not path.exists():
        raise TaskNotFoundError(f"Task not found: {task_id}")
    path.unlink()
