# src/mentor_tasks/core/errors.py

"""
Error taxonomy shared by the store, the pipeline and the distributor.

Every error carries a stable `kind` and a human-readable message so the
presentation layer can map it without string matching.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..tasks.task_models import AssignmentReport


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    ALREADY_COMPLETED = "already_completed"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    STORAGE_FAILURE = "storage_failure"
    PARTIAL_BATCH_FAILURE = "partial_batch_failure"
    VALIDATION_FAILED = "validation_failed"
    INVALID_TRANSITION = "invalid_transition"


class TaskFlowError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_FAILED
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class NotFound(TaskFlowError):
    kind = ErrorKind.NOT_FOUND


class Forbidden(TaskFlowError):
    kind = ErrorKind.FORBIDDEN


class AlreadyCompleted(TaskFlowError):
    kind = ErrorKind.ALREADY_COMPLETED


class ConcurrentModification(TaskFlowError):
    kind = ErrorKind.CONCURRENT_MODIFICATION
    retryable = True


class StorageFailure(TaskFlowError):
    kind = ErrorKind.STORAGE_FAILURE
    retryable = True


class ValidationFailed(TaskFlowError):
    kind = ErrorKind.VALIDATION_FAILED


class InvalidTransition(TaskFlowError):
    kind = ErrorKind.INVALID_TRANSITION


class PartialBatchFailure(TaskFlowError):
    """Some users of an assignment batch failed; the successful ones stay committed."""

    kind = ErrorKind.PARTIAL_BATCH_FAILURE

    def __init__(self, report: AssignmentReport) -> None:
        failed = ", ".join(f"{uid} ({why})" for uid, why in report.failures.items())
        super().__init__(f"{len(report.failures)} assignment(s) failed: {failed}")
        self.report = report

    @property
    def failed_user_ids(self) -> list[str]:
        return list(self.report.failures)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["failures"] = dict(self.report.failures)
        out["created"] = list(self.report.created)
        return out
