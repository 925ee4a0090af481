# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from mentor_tasks.core.state import AppState
from mentor_tasks.tasks.distributor import AssignmentDistributor
from mentor_tasks.tasks.submission import SubmissionPipeline
from mentor_tasks.tasks.task_models import Cadence
from mentor_tasks.tasks.task_store import TaskStore

from .fakes import FakeBlobStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        blob_dir=tmp_path / "blobs",
        allow_resubmission=False,
        keep_submission_history=True,
        max_upload_bytes=1024 * 1024,
        cas_retries=3,
        blob_retries=2,
        retry_delay_seconds=0.0,
        scheduler_enabled=False,
        scheduler_cadence="weekly",
        scheduler_interval_seconds=0.01,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture()
def pipeline(settings: SimpleNamespace, store: TaskStore, blobs: FakeBlobStore) -> SubmissionPipeline:
    return SubmissionPipeline(
        store,
        blobs,
        allow_resubmission=settings.allow_resubmission,
        keep_submission_history=settings.keep_submission_history,
        cas_retries=settings.cas_retries,
        blob_retries=settings.blob_retries,
        retry_delay_seconds=settings.retry_delay_seconds,
        max_upload_bytes=settings.max_upload_bytes,
    )


@pytest.fixture()
def distributor(store: TaskStore) -> AssignmentDistributor:
    return AssignmentDistributor(store)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TaskStore,
    blobs: FakeBlobStore,
    pipeline: SubmissionPipeline,
    distributor: AssignmentDistributor,
) -> AppState:
    """
    AppState wired with a fake blob store.

    NOTE: We keep the real SQLite TaskStore here because its
    compare-and-swap behaviour is part of what we want to test.
    """
    return AppState(
        settings=settings,
        task_store=store,
        blob_store=blobs,  # type: ignore[arg-type]
        pipeline=pipeline,
        distributor=distributor,
    )


@pytest.fixture()
def seeded(store: TaskStore) -> SimpleNamespace:
    """Mentor M with interns A and B, a one-off template T and a weekly template W."""
    mentor = store.add_user(fullname="Mentor M", domain="backend")
    a = store.add_user(fullname="Intern A", domain="backend", mentor_id=mentor.id)
    b = store.add_user(fullname="Intern B", domain="backend", mentor_id=mentor.id)
    template = store.add_template(mentor_id=mentor.id, title="Write a REST client", description="Use httpx")
    weekly = store.add_template(
        mentor_id=mentor.id, title="Weekly report", description="What you did", cadence=Cadence.WEEKLY
    )
    return SimpleNamespace(mentor=mentor, a=a, b=b, template=template, weekly=weekly)
