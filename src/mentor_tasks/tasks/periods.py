# src/mentor_tasks/tasks/periods.py

from __future__ import annotations

import re
from datetime import UTC, datetime

from .task_models import Cadence

_DAILY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WEEKLY = re.compile(r"^\d{4}-W\d{2}$")
_MONTHLY = re.compile(r"^\d{4}-\d{2}$")


def period_id_for(ts: float, cadence: Cadence) -> str:
    """
    Period label for a timestamp (UTC):
      daily   -> 2026-10-19
      weekly  -> 2026-W43 (ISO week)
      monthly -> 2026-10
    """
    dt = datetime.fromtimestamp(ts, tz=UTC)
    if cadence == Cadence.DAILY:
        return dt.strftime("%Y-%m-%d")
    if cadence == Cadence.WEEKLY:
        year, week, _ = dt.isocalendar()
        return f"{year}-W{week:02d}"
    return dt.strftime("%Y-%m")


def cadence_for_period(period_id: str) -> Cadence | None:
    """
    Infer the cadence from the shape of a period id.

    Free-form labels ("W1", "sprint-3", ...) return None, meaning the period
    applies to every recurring template.
    """
    p = (period_id or "").strip()
    if _DAILY.match(p):
        return Cadence.DAILY
    if _WEEKLY.match(p):
        return Cadence.WEEKLY
    if _MONTHLY.match(p):
        return Cadence.MONTHLY
    return None
