# src/mentor_tasks/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (task store, blob store,
  submission pipeline, distributor).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.blob_store import LocalBlobStore
from ..tasks.distributor import AssignmentDistributor
from ..tasks.submission import SubmissionPipeline
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.blob_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    task_store = TaskStore(settings.tasks_db_path)
    blob_store = LocalBlobStore(settings.blob_dir)

    pipeline = SubmissionPipeline(
        task_store,
        blob_store,
        allow_resubmission=settings.allow_resubmission,
        keep_submission_history=settings.keep_submission_history,
        cas_retries=settings.cas_retries,
        blob_retries=settings.blob_retries,
        retry_delay_seconds=settings.retry_delay_seconds,
        max_upload_bytes=settings.max_upload_bytes,
    )

    state = AppState(
        settings=settings,
        task_store=task_store,
        blob_store=blob_store,
        pipeline=pipeline,
        distributor=AssignmentDistributor(task_store),
    )
    logger.debug(
        "State ready db=%s blobs=%s resubmission=%s",
        settings.tasks_db_path,
        settings.blob_dir,
        settings.allow_resubmission,
    )
    return state
