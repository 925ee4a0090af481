# src/mentor_tasks/tasks/task_api.py

"""
Operations exposed to the presentation layer (HTTP routes, console commands).

Every payload goes through a schema in .schemas first. Reads never write.
Mentor-side writes use the same compare-and-swap path as submissions.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..core.errors import ConcurrentModification, Forbidden, NotFound
from ..core.state import AppState
from . import lifecycle
from .schemas import (
    AssignmentRequest,
    SubmissionRequest,
    TaskEdit,
    TemplateCreate,
    UserCreate,
    parse,
)
from .stats import compute_stats, mentor_overview
from .task_models import (
    AssignmentReport,
    Task,
    TaskFilter,
    TaskStats,
    TaskStatus,
    TaskTemplate,
    TaskView,
    User,
    UserView,
)
from .task_scheduler import trigger_scheduled

logger = logging.getLogger(__name__)


def _require_user(state: AppState, user_id: str) -> User:
    user = state.task_store.get_user(user_id)
    if user is None:
        raise NotFound(f"user {user_id} not found")
    return user


def _require_mentor(state: AppState, mentor_id: str) -> User:
    user = _require_user(state, mentor_id)
    if not user.is_mentor:
        raise Forbidden(f"user {mentor_id} is not a mentor")
    return user


# ---- users ----

def register_user(state: AppState, payload: dict[str, Any] | UserCreate) -> User:
    req = parse(UserCreate, payload)
    if req.mentor_id is not None:
        _require_mentor(state, req.mentor_id)
    return state.task_store.add_user(
        fullname=req.fullname, domain=req.domain, mentor_id=req.mentor_id
    )


def register_users(state: AppState, payloads: list[dict[str, Any]]) -> list[User]:
    """Bulk registration: all payloads are validated before the first insert."""
    reqs = [parse(UserCreate, p) for p in payloads]
    for req in reqs:
        if req.mentor_id is not None:
            _require_mentor(state, req.mentor_id)
    return [
        state.task_store.add_user(fullname=r.fullname, domain=r.domain, mentor_id=r.mentor_id)
        for r in reqs
    ]


def list_interns(state: AppState, mentor_id: str) -> list[User]:
    _require_mentor(state, mentor_id)
    return state.task_store.list_interns(mentor_id)


def get_user_view(state: AppState, user_id: str) -> UserView:
    user = _require_user(state, user_id)
    tasks = state.task_store.query_tasks(TaskFilter(assignee_id=user_id))
    return UserView(
        user=user,
        tasks_assigned=tasks,
        tasks_done=[t for t in tasks if t.status == TaskStatus.COMPLETED],
        stats=compute_stats(tasks),
    )


# ---- reads ----

def list_user_tasks(state: AppState, user_id: str) -> list[TaskView]:
    _require_user(state, user_id)
    return state.task_store.query_task_views(TaskFilter(assignee_id=user_id))


def list_mentor_tasks(state: AppState, mentor_id: str) -> list[TaskView]:
    _require_mentor(state, mentor_id)
    return state.task_store.query_task_views(TaskFilter(mentor_id=mentor_id))


def list_completed_tasks(state: AppState, user_id: str) -> list[TaskView]:
    _require_user(state, user_id)
    return state.task_store.query_task_views(
        TaskFilter(assignee_id=user_id, status=TaskStatus.COMPLETED)
    )


def get_task_view(state: AppState, task_id: str) -> TaskView:
    view = state.task_store.with_assignee_and_mentor(task_id)
    if view is None:
        raise NotFound(f"task {task_id} not found")
    return view


def get_user_stats(state: AppState, user_id: str) -> TaskStats:
    _require_user(state, user_id)
    return compute_stats(state.task_store.query_tasks(TaskFilter(assignee_id=user_id)))


def get_mentor_overview(state: AppState, mentor_id: str) -> dict[str, TaskStats]:
    _require_mentor(state, mentor_id)
    return mentor_overview(state.task_store, mentor_id)


# ---- templates / assignment ----

def create_template(state: AppState, payload: dict[str, Any] | TemplateCreate) -> TaskTemplate:
    req = parse(TemplateCreate, payload)
    _require_mentor(state, req.mentor_id)
    return state.task_store.add_template(
        mentor_id=req.mentor_id,
        title=req.title,
        description=req.description,
        cadence=req.cadence,
        due_in_days=req.due_in_days,
    )


def deactivate_template(state: AppState, mentor_id: str, template_id: str) -> None:
    """Stops scheduled runs from using the template; existing tasks are kept."""
    tpl = state.task_store.get_template(template_id)
    if tpl is None:
        raise NotFound(f"template {template_id} not found")
    if tpl.mentor_id != mentor_id:
        raise Forbidden(f"template {template_id} does not belong to mentor {mentor_id}")
    state.task_store.set_template_active(template_id, False)
    logger.info("Template %s deactivated by %s", template_id, mentor_id)


async def assign_template(
    state: AppState,
    payload: dict[str, Any] | AssignmentRequest,
    *,
    strict: bool = False,
) -> AssignmentReport:
    """
    Direct assignment. With strict=True a report with failures is raised as
    PartialBatchFailure (the successful assignments stay committed either way).
    """
    req = parse(AssignmentRequest, payload)
    report = await state.distributor.assign(
        req.mentor_id, req.template_id, req.user_ids, due_at=req.due_at
    )
    if strict:
        report.raise_for_failures()
    return report


async def run_scheduled(state: AppState, period_id: str, *, strict: bool = False) -> AssignmentReport:
    report = await trigger_scheduled(state.distributor, period_id)
    if strict:
        report.raise_for_failures()
    return report


# ---- submission ----

async def submit_evidence(state: AppState, payload: dict[str, Any] | SubmissionRequest) -> TaskView:
    req = parse(SubmissionRequest, payload)
    return await state.pipeline.submit(
        req.task_id,
        req.user_id,
        filename=req.filename,
        content=req.content,
        content_type=req.content_type,
    )


# ---- mentor-side transitions ----

def _cas_attempts(state: AppState) -> int:
    return max(1, int(getattr(state.settings, "cas_retries", 3)) + 1)


async def _mentor_write(
    state: AppState,
    task_id: str,
    mentor_id: str | None,
    make_fields: Callable[[Task], dict[str, Any]],
    action: str,
) -> TaskView:
    """
    Load, authorize, compute fields, compare-and-swap; retried on lost races.

    mentor_id=None means a system actor (no ownership check).
    """
    store = state.task_store
    keep_history = bool(getattr(state.settings, "keep_submission_history", True))
    attempts = _cas_attempts(state)

    for attempt in range(1, attempts + 1):
        task = await asyncio.to_thread(store.get_task, task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        if mentor_id is not None and task.mentor_id != mentor_id:
            raise Forbidden(f"task {task_id} is not owned by mentor {mentor_id}")

        fields = make_fields(task)
        try:
            await asyncio.to_thread(
                store.compare_and_swap, task_id, task.version, fields, keep_history=keep_history
            )
            break
        except ConcurrentModification:
            logger.warning("%s lost a race task_id=%s attempt=%d/%d", action, task_id, attempt, attempts)
            if attempt == attempts:
                raise

    logger.info("Task %s %s by %s", task_id, action, mentor_id or "system")
    return get_task_view(state, task_id)


async def mark_incomplete(state: AppState, task_id: str, mentor_id: str | None) -> TaskView:
    return await _mentor_write(state, task_id, mentor_id, lifecycle.mark_incomplete, "marked incomplete")


async def reset_pending(state: AppState, task_id: str, mentor_id: str | None) -> TaskView:
    return await _mentor_write(state, task_id, mentor_id, lifecycle.reset_pending, "reset to pending")


async def reopen_task(state: AppState, task_id: str, mentor_id: str) -> TaskView:
    return await _mentor_write(state, task_id, mentor_id, lifecycle.reopen, "reopened")


async def edit_task(
    state: AppState, task_id: str, mentor_id: str, payload: dict[str, Any] | TaskEdit
) -> TaskView:
    req = parse(TaskEdit, payload)
    changes: dict[str, Any] = {}
    if req.title is not None:
        changes["title"] = req.title
    if req.description is not None:
        changes["description"] = req.description
    return await _mentor_write(state, task_id, mentor_id, lambda _t: dict(changes), "edited")


async def delete_task(
    state: AppState, task_id: str, mentor_id: str, *, release_blobs: bool = True
) -> list[str]:
    """
    Delete a task and its submissions. Returns the orphaned blob refs.

    With release_blobs the local blob store drops them right away; otherwise
    they are left for collect_garbage().
    """
    task = await asyncio.to_thread(state.task_store.get_task, task_id)
    if task is None:
        raise NotFound(f"task {task_id} not found")
    if task.mentor_id != mentor_id:
        raise Forbidden(f"task {task_id} is not owned by mentor {mentor_id}")

    refs = await asyncio.to_thread(state.task_store.delete_task, task_id)

    if release_blobs:
        live = await asyncio.to_thread(state.task_store.list_blob_refs)
        for ref in refs:
            if ref in live:
                continue
            try:
                state.blob_store.discard(ref)
            except (OSError, ValueError):
                logger.warning("Could not release blob %s of deleted task %s", ref, task_id, exc_info=True)
    return refs


async def collect_orphaned_blobs(state: AppState) -> list[str]:
    live = await asyncio.to_thread(state.task_store.list_blob_refs)
    return await asyncio.to_thread(state.blob_store.collect_garbage, live)
