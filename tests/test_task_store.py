# tests/test_task_store.py

from __future__ import annotations

import time
from pathlib import Path

import pytest

from mentor_tasks.core.errors import ConcurrentModification, NotFound
from mentor_tasks.tasks.task_models import Submission, Task, TaskFilter, TaskStatus
from mentor_tasks.tasks.task_store import TaskStore, new_id


def _task(seeded, user, key: str) -> Task:
    now = time.time()
    return Task(
        id=new_id(),
        template_id=seeded.template.id,
        title=seeded.template.title,
        description=seeded.template.description,
        assignee_id=user.id,
        mentor_id=seeded.mentor.id,
        status=TaskStatus.PENDING,
        submission_id=None,
        idempotency_key=key,
        period_id=None,
        due_at=None,
        created_at=now,
        updated_at=now,
    )


def _submission(task: Task, ref: str = "mem://1") -> Submission:
    return Submission(
        id=new_id(),
        task_id=task.id,
        user_id=task.assignee_id,
        blob_ref=ref,
        filename="report.pdf",
        content_type="application/pdf",
        size=3,
        submitted_at=time.time(),
    )


def test_insert_if_absent_is_idempotent(store: TaskStore, seeded) -> None:
    assert store.insert_if_absent("k1", _task(seeded, seeded.a, "k1")) is True
    assert store.insert_if_absent("k1", _task(seeded, seeded.a, "k1")) is False
    assert store.count_tasks() == 1


def test_insert_if_absent_leaves_the_callers_task_untouched(store: TaskStore, seeded) -> None:
    task = _task(seeded, seeded.a, "draft-key")

    assert store.insert_if_absent("k1", task) is True

    assert task.idempotency_key == "draft-key"
    stored = store.get_task(task.id)
    assert stored is not None and stored.idempotency_key == "k1"


def test_compare_and_swap_bumps_version_and_detects_conflicts(store: TaskStore, seeded) -> None:
    task = _task(seeded, seeded.a, "k1")
    store.insert_if_absent("k1", task)

    sub = _submission(task)
    written = store.compare_and_swap(
        task.id, 0, {"status": TaskStatus.COMPLETED, "submission_id": sub.id}, submission=sub
    )
    assert written.version == 1
    assert written.status == TaskStatus.COMPLETED

    reread = store.get_task(task.id)
    assert reread is not None and reread.version == 1 and reread.submission_id == sub.id

    with pytest.raises(ConcurrentModification):
        store.compare_and_swap(task.id, 0, {"title": "stale write"})

    with pytest.raises(NotFound):
        store.compare_and_swap("missing", 0, {"title": "x"})


def test_failed_compare_and_swap_writes_nothing(store: TaskStore, seeded) -> None:
    task = _task(seeded, seeded.a, "k1")
    store.insert_if_absent("k1", task)
    sub = _submission(task)

    with pytest.raises(ConcurrentModification):
        store.compare_and_swap(
            task.id, 7, {"status": TaskStatus.COMPLETED, "submission_id": sub.id}, submission=sub
        )

    assert store.get_submission(sub.id) is None
    reread = store.get_task(task.id)
    assert reread is not None and reread.status == TaskStatus.PENDING


def test_replacing_a_submission_supersedes_or_drops_the_old_one(store: TaskStore, seeded) -> None:
    task = _task(seeded, seeded.a, "k1")
    store.insert_if_absent("k1", task)
    first = _submission(task, "mem://1")
    store.compare_and_swap(task.id, 0, {"status": TaskStatus.COMPLETED, "submission_id": first.id}, submission=first)

    second = _submission(task, "mem://2")
    store.compare_and_swap(task.id, 1, {"submission_id": second.id}, submission=second, keep_history=True)

    subs = store.list_submissions(task.id)
    assert [s.blob_ref for s in subs] == ["mem://1", "mem://2"]
    assert subs[0].superseded_at is not None and subs[1].active

    third = _submission(task, "mem://3")
    store.compare_and_swap(task.id, 2, {"submission_id": third.id}, submission=third, keep_history=False)
    assert [s.blob_ref for s in store.list_submissions(task.id)] == ["mem://1", "mem://3"]


def test_join_resolves_assignee_mentor_and_submission(store: TaskStore, seeded) -> None:
    task = _task(seeded, seeded.b, "k1")
    store.insert_if_absent("k1", task)
    sub = _submission(task)
    store.compare_and_swap(task.id, 0, {"status": TaskStatus.COMPLETED, "submission_id": sub.id}, submission=sub)

    view = store.with_assignee_and_mentor(task.id)
    assert view is not None
    assert view.assignee is not None and view.assignee.fullname == "Intern B"
    assert view.mentor is not None and view.mentor.is_mentor
    assert view.submission is not None and view.submission.blob_ref == "mem://1"
    assert view.to_dict()["status"] == "completed"

    assert store.with_assignee_and_mentor("missing") is None


def test_query_filters(store: TaskStore, seeded) -> None:
    store.insert_if_absent("k1", _task(seeded, seeded.a, "k1"))
    store.insert_if_absent("k2", _task(seeded, seeded.b, "k2"))

    assert len(store.query_tasks(TaskFilter(mentor_id=seeded.mentor.id))) == 2
    assert [t.assignee_id for t in store.query_tasks(TaskFilter(assignee_id=seeded.a.id))] == [seeded.a.id]
    assert store.query_tasks(TaskFilter(status=TaskStatus.COMPLETED)) == []
    assert len(store.query_tasks(TaskFilter(limit=1))) == 1


def test_delete_task_returns_orphaned_blob_refs(store: TaskStore, seeded) -> None:
    task = _task(seeded, seeded.a, "k1")
    store.insert_if_absent("k1", task)
    sub = _submission(task, "mem://gone")
    store.compare_and_swap(task.id, 0, {"status": TaskStatus.COMPLETED, "submission_id": sub.id}, submission=sub)

    assert store.delete_task(task.id) == ["mem://gone"]
    assert store.get_task(task.id) is None
    assert store.list_blob_refs() == set()

    with pytest.raises(NotFound):
        store.delete_task(task.id)


def test_reopening_the_same_database_keeps_data(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    first = TaskStore(db)
    mentor = first.add_user(fullname="M")

    second = TaskStore(db)
    assert second.get_user(mentor.id) is not None
    assert second.list_interns(mentor.id) == []
