# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from mentor_tasks.config import Settings


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MENTOR_TASKS_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("MENTOR_TASKS_ALLOW_RESUBMISSION", "yes")
    monkeypatch.setenv("MENTOR_TASKS_CAS_RETRIES", "-4")
    monkeypatch.setenv("MENTOR_TASKS_RETRY_DELAY_SECONDS", "not-a-number")
    monkeypatch.setenv("MENTOR_TASKS_SCHEDULER_CADENCE", "Monthly")
    monkeypatch.delenv("MENTOR_TASKS_TASKS_DB_PATH", raising=False)
    monkeypatch.delenv("MENTOR_TASKS_BLOB_DIR", raising=False)

    s = Settings.from_env()

    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
    assert s.blob_dir == tmp_path / "blobs"
    assert s.allow_resubmission is True
    assert s.cas_retries == 0
    assert s.retry_delay_seconds == 0.2
    assert s.scheduler_cadence == "monthly"


def test_unknown_cadence_falls_back_to_weekly(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MENTOR_TASKS_SCHEDULER_CADENCE", "hourly")
    assert Settings.from_env().scheduler_cadence == "weekly"
