"""Logging configuration for the crop-planner CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _PackageFilter(logging.Filter):
    """Let crop_planner records through at the configured level, others only on ERROR+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "crop_planner" or record.name.startswith("crop_planner."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(level: int | str = logging.WARNING, *, log_file: str | Path | None = None) -> None:
    """Install a stderr handler (and an optional file handler) on the root logger.

    Safe to call more than once: previous handlers are removed first.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(fmt)
    console.addFilter(_PackageFilter())
    root.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)
        root.setLevel(logging.DEBUG)

    logging.captureWarnings(True)
