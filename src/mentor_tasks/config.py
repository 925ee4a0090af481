# src/mentor_tasks/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from dotenv import load_dotenv

from .tasks.task_models import Cadence

ENV_PREFIX = "MENTOR_TASKS"

N = TypeVar("N", int, float)

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_number(name: str, default: N, cast: Callable[[str], N], *, minimum: N | None = None) -> N:
    """Parse a numeric env var; blank or malformed values fall back to `default`."""
    raw = (os.getenv(name) or "").strip()
    try:
        value = cast(raw) if raw else default
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return minimum
    return value


def _env_choice(name: str, default: str, choices: Iterable[str]) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    return raw if raw in set(choices) else default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    blob_dir: Path

    # ---- Submission policy ----
    allow_resubmission: bool
    keep_submission_history: bool
    max_upload_bytes: int

    # ---- Retry bounds ----
    cas_retries: int
    blob_retries: int
    retry_delay_seconds: float

    # ---- Scheduler ----
    scheduler_enabled: bool
    scheduler_cadence: str
    scheduler_interval_seconds: float

    # ---- Connectors ----
    console_enabled: bool

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "mentor-tasks")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/mentor_tasks"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        blob_dir = _env_path(_k("BLOB_DIR"), data_dir / "blobs")

        allow_resubmission = _env_bool(_k("ALLOW_RESUBMISSION"), False)
        keep_submission_history = _env_bool(_k("KEEP_SUBMISSION_HISTORY"), True)
        max_upload_bytes = _env_number(_k("MAX_UPLOAD_BYTES"), 20 * 1024 * 1024, int, minimum=1)

        cas_retries = _env_number(_k("CAS_RETRIES"), 3, int, minimum=0)
        blob_retries = _env_number(_k("BLOB_RETRIES"), 2, int, minimum=0)
        retry_delay_seconds = _env_number(_k("RETRY_DELAY_SECONDS"), 0.2, float, minimum=0.0)

        scheduler_enabled = _env_bool(_k("SCHEDULER_ENABLED"), False)
        scheduler_cadence = _env_choice(
            _k("SCHEDULER_CADENCE"), Cadence.WEEKLY.value, (c.value for c in Cadence)
        )
        scheduler_interval_seconds = _env_number(
            _k("SCHEDULER_INTERVAL_SECONDS"), 300.0, float, minimum=1.0
        )

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            blob_dir=blob_dir,
            allow_resubmission=allow_resubmission,
            keep_submission_history=keep_submission_history,
            max_upload_bytes=max_upload_bytes,
            cas_retries=cas_retries,
            blob_retries=blob_retries,
            retry_delay_seconds=retry_delay_seconds,
            scheduler_enabled=scheduler_enabled,
            scheduler_cadence=scheduler_cadence,
            scheduler_interval_seconds=scheduler_interval_seconds,
            console_enabled=console_enabled,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
