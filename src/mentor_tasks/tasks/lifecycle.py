# src/mentor_tasks/tasks/lifecycle.py

"""
Task lifecycle state machine.

    pending ----mark_incomplete----> incomplete
    incomplete --reset_pending-----> pending
    pending / incomplete --complete--> completed
    completed ---resubmit----------> completed   (only when resubmission is allowed)
    completed ---reopen------------> incomplete  (mentor override, drops the submission)

Each transition returns the field changes for a compare-and-swap write; it never
mutates the task it is given.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Any

from ..core.errors import AlreadyCompleted, InvalidTransition
from .task_models import Task, TaskStatus


class Transition(str, Enum):
    MARK_INCOMPLETE = "mark_incomplete"
    RESET_PENDING = "reset_pending"
    COMPLETE = "complete"
    RESUBMIT = "resubmit"
    REOPEN = "reopen"


_ALLOWED: dict[Transition, tuple[frozenset[TaskStatus], TaskStatus]] = {
    Transition.MARK_INCOMPLETE: (frozenset({TaskStatus.PENDING}), TaskStatus.INCOMPLETE),
    Transition.RESET_PENDING: (frozenset({TaskStatus.INCOMPLETE}), TaskStatus.PENDING),
    Transition.COMPLETE: (
        frozenset({TaskStatus.PENDING, TaskStatus.INCOMPLETE}),
        TaskStatus.COMPLETED,
    ),
    Transition.RESUBMIT: (frozenset({TaskStatus.COMPLETED}), TaskStatus.COMPLETED),
    Transition.REOPEN: (frozenset({TaskStatus.COMPLETED}), TaskStatus.INCOMPLETE),
}


def check_invariant(task: Task) -> None:
    """completed <=> submission reference present."""
    has_ref = task.submission_id is not None
    if (task.status == TaskStatus.COMPLETED) != has_ref:
        raise InvalidTransition(
            f"task {task.id}: status={task.status.value} with "
            f"submission_id={task.submission_id!r} breaks the completion invariant"
        )


def _target(task: Task, transition: Transition) -> TaskStatus:
    sources, target = _ALLOWED[transition]
    if task.status not in sources:
        raise InvalidTransition(
            f"cannot {transition.value} task {task.id} in status {task.status.value}"
        )
    return target


def mark_incomplete(task: Task) -> dict[str, Any]:
    return {"status": _target(task, Transition.MARK_INCOMPLETE), "submission_id": None}


def reset_pending(task: Task) -> dict[str, Any]:
    return {"status": _target(task, Transition.RESET_PENDING), "submission_id": None}


def complete(task: Task, submission_id: str, *, allow_resubmission: bool = False) -> dict[str, Any]:
    """
    Completion through a submission.

    A completed task is only accepted again when resubmission is allowed; the new
    submission then replaces the old reference.
    """
    if not submission_id:
        raise InvalidTransition(f"cannot complete task {task.id} without a submission reference")

    if task.status == TaskStatus.COMPLETED:
        if not allow_resubmission:
            raise AlreadyCompleted(f"task {task.id} is already completed")
        status = _target(task, Transition.RESUBMIT)
    else:
        status = _target(task, Transition.COMPLETE)

    return {"status": status, "submission_id": submission_id}


def reopen(task: Task) -> dict[str, Any]:
    """Mentor override; the stale submission reference is invalidated together with the status."""
    return {"status": _target(task, Transition.REOPEN), "submission_id": None}


def apply_fields(task: Task, fields: dict[str, Any]) -> Task:
    """Preview of the task after a write; raises if the result would break the invariant."""
    updated = replace(task, **fields)
    check_invariant(updated)
    return updated
