# tests/test_lifecycle.py

from __future__ import annotations

import time

import pytest

from mentor_tasks.core.errors import AlreadyCompleted, InvalidTransition
from mentor_tasks.tasks import lifecycle
from mentor_tasks.tasks.task_models import Task, TaskStatus


def make_task(status: TaskStatus = TaskStatus.PENDING, submission_id: str | None = None) -> Task:
    now = time.time()
    return Task(
        id="t1",
        template_id="tpl",
        title="Task",
        description="",
        assignee_id="a",
        mentor_id="m",
        status=status,
        submission_id=submission_id,
        idempotency_key="tpl:a:direct:0",
        period_id=None,
        due_at=None,
        created_at=now,
        updated_at=now,
    )


def test_legal_transitions_keep_the_invariant() -> None:
    t = make_task()

    t = lifecycle.apply_fields(t, lifecycle.mark_incomplete(t))
    assert t.status == TaskStatus.INCOMPLETE and t.submission_id is None

    t = lifecycle.apply_fields(t, lifecycle.reset_pending(t))
    assert t.status == TaskStatus.PENDING

    t = lifecycle.apply_fields(t, lifecycle.mark_incomplete(t))
    t = lifecycle.apply_fields(t, lifecycle.complete(t, "sub-1"))
    assert t.status == TaskStatus.COMPLETED and t.submission_id == "sub-1"

    t = lifecycle.apply_fields(t, lifecycle.reopen(t))
    assert t.status == TaskStatus.INCOMPLETE and t.submission_id is None


def test_complete_requires_a_submission_reference() -> None:
    with pytest.raises(InvalidTransition):
        lifecycle.complete(make_task(), "")


def test_completed_task_rejects_submission_unless_resubmission_allowed() -> None:
    done = make_task(TaskStatus.COMPLETED, "sub-1")

    with pytest.raises(AlreadyCompleted):
        lifecycle.complete(done, "sub-2")

    fields = lifecycle.complete(done, "sub-2", allow_resubmission=True)
    assert fields == {"status": TaskStatus.COMPLETED, "submission_id": "sub-2"}


@pytest.mark.parametrize(
    "fn,status",
    [
        (lifecycle.mark_incomplete, TaskStatus.INCOMPLETE),
        (lifecycle.mark_incomplete, TaskStatus.COMPLETED),
        (lifecycle.reset_pending, TaskStatus.PENDING),
        (lifecycle.reopen, TaskStatus.PENDING),
        (lifecycle.reopen, TaskStatus.INCOMPLETE),
    ],
)
def test_illegal_transitions_raise(fn, status: TaskStatus) -> None:
    sub = "sub-1" if status == TaskStatus.COMPLETED else None
    with pytest.raises(InvalidTransition):
        fn(make_task(status, sub))


def test_invariant_rejects_inconsistent_fields() -> None:
    with pytest.raises(InvalidTransition):
        lifecycle.apply_fields(make_task(), {"status": TaskStatus.COMPLETED})
    with pytest.raises(InvalidTransition):
        lifecycle.apply_fields(make_task(TaskStatus.COMPLETED, "sub-1"), {"submission_id": None})


def test_legacy_status_encoding() -> None:
    assert TaskStatus.from_legacy(None) == TaskStatus.PENDING
    assert TaskStatus.from_legacy(False) == TaskStatus.INCOMPLETE
    assert TaskStatus.from_legacy(True) == TaskStatus.COMPLETED
    assert TaskStatus.from_db("true") == TaskStatus.COMPLETED
    assert TaskStatus.from_db(None) == TaskStatus.PENDING
    assert TaskStatus.from_db("incomplete") == TaskStatus.INCOMPLETE
