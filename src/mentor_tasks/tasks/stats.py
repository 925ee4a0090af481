# src/mentor_tasks/tasks/stats.py

from __future__ import annotations

from collections.abc import Iterable

from .task_models import Task, TaskFilter, TaskStats, TaskStatus
from .task_store import TaskStore


def compute_stats(tasks: Iterable[Task]) -> TaskStats:
    """Three disjoint buckets; pending + incomplete + completed == total."""
    pending = incomplete = completed = 0
    for t in tasks:
        if t.status == TaskStatus.COMPLETED:
            completed += 1
        elif t.status == TaskStatus.INCOMPLETE:
            incomplete += 1
        else:
            pending += 1
    return TaskStats(
        total=pending + incomplete + completed,
        pending=pending,
        incomplete=incomplete,
        completed=completed,
    )


def user_stats(store: TaskStore, user_id: str) -> TaskStats:
    return compute_stats(store.query_tasks(TaskFilter(assignee_id=user_id)))


def mentor_overview(store: TaskStore, mentor_id: str) -> dict[str, TaskStats]:
    """Stats for every intern of a mentor, interns without tasks included."""
    by_user: dict[str, list[Task]] = {u.id: [] for u in store.list_interns(mentor_id)}
    for t in store.query_tasks(TaskFilter(mentor_id=mentor_id)):
        by_user.setdefault(t.assignee_id, []).append(t)
    return {uid: compute_stats(ts) for uid, ts in by_user.items()}
