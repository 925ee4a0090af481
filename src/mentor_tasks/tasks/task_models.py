# src/mentor_tasks/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "pending" means the task was never acted on,
      "incomplete" means a mentor (or the system) explicitly marked it not done.
    - older records encoded the same tri-state as null/false/true on a single field;
      from_legacy() maps them.
    """

    PENDING = "pending"
    INCOMPLETE = "incomplete"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.from_legacy(raw)

    @classmethod
    def from_legacy(cls, raw: Any) -> TaskStatus:
        if raw is None:
            return cls.PENDING
        if raw is True or str(raw).strip().lower() in ("true", "1"):
            return cls.COMPLETED
        if raw is False or str(raw).strip().lower() in ("false", "0"):
            return cls.INCOMPLETE
        return cls.PENDING


class Cadence(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(slots=True)
class User:
    id: str
    fullname: str
    domain: str
    mentor_id: str | None
    created_at: float

    @property
    def is_mentor(self) -> bool:
        # A user without a mentor is a mentor.
        return self.mentor_id is None


@dataclass(slots=True)
class TaskTemplate:
    id: str
    mentor_id: str
    title: str
    description: str
    cadence: Cadence | None
    due_in_days: int | None
    active: bool
    created_at: float

    @property
    def recurring(self) -> bool:
        return self.cadence is not None


@dataclass(slots=True)
class Task:
    id: str
    template_id: str
    title: str
    description: str

    assignee_id: str
    mentor_id: str

    status: TaskStatus
    submission_id: str | None

    idempotency_key: str
    period_id: str | None
    due_at: float | None

    created_at: float
    updated_at: float
    version: int = 0

    def is_expired(self, now_ts: float) -> bool:
        return (
            self.status != TaskStatus.COMPLETED
            and self.due_at is not None
            and self.due_at < now_ts
        )

    def is_active(self, now_ts: float) -> bool:
        """Active means it still blocks a fresh direct assignment of the same template."""
        return self.status != TaskStatus.COMPLETED and not self.is_expired(now_ts)


@dataclass(slots=True, frozen=True)
class Submission:
    id: str
    task_id: str
    user_id: str
    blob_ref: str
    filename: str
    content_type: str
    size: int
    submitted_at: float
    superseded_at: float | None = None

    @property
    def active(self) -> bool:
        return self.superseded_at is None


@dataclass(slots=True, frozen=True)
class TaskView:
    """A task with its assignee and mentor resolved (and its active submission, if any)."""

    task: Task
    assignee: User | None
    mentor: User | None
    submission: Submission | None = None

    def to_dict(self) -> dict[str, Any]:
        t = self.task
        return {
            "id": t.id,
            "template_id": t.template_id,
            "title": t.title,
            "description": t.description,
            "status": t.status.value,
            "assignee": _user_brief(self.assignee, t.assignee_id),
            "mentor": _user_brief(self.mentor, t.mentor_id),
            "submission": (
                {
                    "id": self.submission.id,
                    "blob_ref": self.submission.blob_ref,
                    "filename": self.submission.filename,
                    "submitted_at": self.submission.submitted_at,
                }
                if self.submission is not None
                else None
            ),
            "period_id": t.period_id,
            "due_at": t.due_at,
            "created_at": t.created_at,
            "updated_at": t.updated_at,
        }


def _user_brief(user: User | None, fallback_id: str) -> dict[str, Any]:
    if user is None:
        return {"id": fallback_id, "fullname": None}
    return {"id": user.id, "fullname": user.fullname, "domain": user.domain}


@dataclass(slots=True, frozen=True)
class TaskFilter:
    """Query filter for TaskRepo.query_tasks(); None fields are not constrained."""

    assignee_id: str | None = None
    mentor_id: str | None = None
    template_id: str | None = None
    status: TaskStatus | None = None
    period_id: str | None = None
    limit: int | None = None


@dataclass(slots=True, frozen=True)
class TaskStats:
    total: int
    pending: int
    incomplete: int
    completed: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "incomplete": self.incomplete,
            "completed": self.completed,
        }


@dataclass(slots=True)
class UserView:
    user: User
    tasks_assigned: list[Task]
    tasks_done: list[Task]
    stats: TaskStats


@dataclass(slots=True, frozen=True)
class AssignmentTarget:
    template: TaskTemplate
    user_id: str
    idempotency_key: str
    period_id: str | None
    due_at: float | None


@dataclass(slots=True)
class AssignmentBatch:
    """Targets computed for one distribution run. Never persisted."""

    targets: list[AssignmentTarget] = field(default_factory=list)
    # user_id -> reason, for users rejected while computing the targets
    rejected: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AssignmentReport:
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            from ..core.errors import PartialBatchFailure

            raise PartialBatchFailure(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": list(self.created),
            "skipped": list(self.skipped),
            "failures": dict(self.failures),
        }
