# tests/test_stats.py

from __future__ import annotations

import random

import pytest

from mentor_tasks.core.errors import AlreadyCompleted, InvalidTransition
from mentor_tasks.core.state import AppState
from mentor_tasks.tasks import task_api
from mentor_tasks.tasks.stats import compute_stats, mentor_overview, user_stats
from mentor_tasks.tasks.task_models import TaskFilter, TaskStats
from mentor_tasks.tasks.task_store import TaskStore


@pytest.mark.asyncio
async def test_buckets_always_add_up(state: AppState, store: TaskStore, seeded) -> None:
    await task_api.run_scheduled(state, "W1")
    await task_api.run_scheduled(state, "W2")
    await task_api.assign_template(
        state,
        {"mentor_id": seeded.mentor.id, "template_id": seeded.template.id, "user_ids": [seeded.a.id, seeded.b.id]},
    )
    task_ids = [t.id for t in store.query_tasks(TaskFilter())]
    rng = random.Random(1234)

    async def submit(task_id: str) -> None:
        task = store.get_task(task_id)
        assert task is not None
        await task_api.submit_evidence(
            state,
            {"task_id": task_id, "user_id": task.assignee_id, "filename": "e.txt", "content": b"e"},
        )

    actions = [
        lambda tid: task_api.mark_incomplete(state, tid, seeded.mentor.id),
        lambda tid: task_api.reset_pending(state, tid, seeded.mentor.id),
        lambda tid: task_api.reopen_task(state, tid, seeded.mentor.id),
        submit,
    ]

    for _ in range(60):
        tid = rng.choice(task_ids)
        action = rng.choice(actions)
        try:
            await action(tid)
        except (InvalidTransition, AlreadyCompleted):
            pass

        for uid in (seeded.a.id, seeded.b.id):
            s = user_stats(store, uid)
            assert s.pending + s.incomplete + s.completed == s.total

    everything = compute_stats(store.query_tasks(TaskFilter()))
    assert everything.total == len(task_ids) == 6


def test_mentor_overview_lists_interns_without_tasks(store: TaskStore, seeded) -> None:
    overview = mentor_overview(store, seeded.mentor.id)

    assert set(overview) == {seeded.a.id, seeded.b.id}
    assert all(s == TaskStats(total=0, pending=0, incomplete=0, completed=0) for s in overview.values())
    assert overview[seeded.a.id].to_dict() == {"total": 0, "pending": 0, "incomplete": 0, "completed": 0}
