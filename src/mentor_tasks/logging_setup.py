# src/mentor_tasks/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "mentor_tasks.log"

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that only reach the console at WARNING+ (they log on every tick or query).
_QUIET_PREFIXES = (
    "mentor_tasks.tasks.task_scheduler",
    "mentor_tasks.tasks.task_store",
)


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """'debug' / 'INFO' / '20' -> logging level; unknown names give `default`."""
    raw = (name or "").strip().upper()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the interactive console readable:
    - mentor_tasks logs pass, except the store and the background scheduler (WARNING+)
    - everything else, captured warnings included, only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if not name.startswith("mentor_tasks."):
            return record.levelno >= logging.ERROR
        if name.startswith(_QUIET_PREFIXES):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/mentor_tasks",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,
    backups: int = 3,
) -> Path:
    """
    Install a filtered stderr handler and a rotating file handler on the root logger.

    Call once, before the first log line. Returns the log file path.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.addFilter(_ConsoleNoiseFilter())

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
    )
    file_handler.setLevel(file_level)

    for handler in (console, file_handler):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return log_file
