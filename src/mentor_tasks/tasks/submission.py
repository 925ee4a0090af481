# src/mentor_tasks/tasks/submission.py

from __future__ import annotations

"""
Submission pipeline.

submit() does, in order:
- precondition checks (task exists, caller is the assignee, not already completed),
- blob write through the injected BlobStore (retried, StorageFailure on give-up),
- one compare-and-swap on the task that also records the Submission row.

A failure before the compare-and-swap leaves the task untouched. A failure (or a
cancelled request) after the blob write only leaves an orphaned blob behind.
"""

import asyncio
import logging
import time

from ..core.errors import (
    AlreadyCompleted,
    ConcurrentModification,
    Forbidden,
    NotFound,
    StorageFailure,
    ValidationFailed,
)
from ..core.ports import BlobStore, TaskRepo
from . import lifecycle
from .task_models import Submission, Task, TaskStatus, TaskView
from .task_store import new_id

logger = logging.getLogger(__name__)


class SubmissionPipeline:
    def __init__(
        self,
        task_store: TaskRepo,
        blob_store: BlobStore,
        *,
        allow_resubmission: bool = False,
        keep_submission_history: bool = True,
        cas_retries: int = 3,
        blob_retries: int = 2,
        retry_delay_seconds: float = 0.2,
        max_upload_bytes: int = 20 * 1024 * 1024,
    ) -> None:
        self._tasks = task_store
        self._blobs = blob_store
        self.allow_resubmission = allow_resubmission
        self.keep_submission_history = keep_submission_history
        self._cas_attempts = max(1, int(cas_retries) + 1)
        self._blob_attempts = max(1, int(blob_retries) + 1)
        self._retry_delay = max(0.0, float(retry_delay_seconds))
        self._max_upload_bytes = int(max_upload_bytes)

    async def _load_checked(self, task_id: str, user_id: str) -> Task:
        task = await asyncio.to_thread(self._tasks.get_task, task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        if task.assignee_id != user_id:
            raise Forbidden(f"task {task_id} is not assigned to user {user_id}")
        if task.status == TaskStatus.COMPLETED and not self.allow_resubmission:
            raise AlreadyCompleted(f"task {task_id} is already completed")
        return task

    async def _store_blob(self, content: bytes, metadata: dict) -> str:
        last = StorageFailure("blob store unavailable")
        for attempt in range(1, self._blob_attempts + 1):
            try:
                return await self._blobs.store(content, metadata)
            except StorageFailure as e:
                last = e
            except OSError as e:
                last = StorageFailure(f"blob store error: {e}")

            logger.warning(
                "Blob write failed task_id=%s attempt=%d/%d: %s",
                metadata.get("task_id"),
                attempt,
                self._blob_attempts,
                last.message,
            )
            if attempt < self._blob_attempts and self._retry_delay:
                await asyncio.sleep(self._retry_delay * attempt)

        raise last

    async def submit(
        self,
        task_id: str,
        user_id: str,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> TaskView:
        if not content:
            raise ValidationFailed("submission file is empty")
        if len(content) > self._max_upload_bytes:
            raise ValidationFailed(
                f"submission file is too large ({len(content)} > {self._max_upload_bytes} bytes)"
            )

        task = await self._load_checked(task_id, user_id)

        blob_ref = await self._store_blob(
            content,
            {
                "task_id": task_id,
                "user_id": user_id,
                "filename": filename,
                "content_type": content_type,
            },
        )

        for attempt in range(1, self._cas_attempts + 1):
            submission = Submission(
                id=new_id(),
                task_id=task_id,
                user_id=user_id,
                blob_ref=blob_ref,
                filename=filename,
                content_type=content_type,
                size=len(content),
                submitted_at=time.time(),
            )
            # Raises AlreadyCompleted if someone else completed the task meanwhile.
            fields = lifecycle.complete(
                task, submission.id, allow_resubmission=self.allow_resubmission
            )
            try:
                await asyncio.to_thread(
                    self._tasks.compare_and_swap,
                    task_id,
                    task.version,
                    fields,
                    submission=submission,
                    keep_history=self.keep_submission_history,
                )
                break
            except ConcurrentModification:
                logger.warning(
                    "Submission lost a race task_id=%s attempt=%d/%d",
                    task_id,
                    attempt,
                    self._cas_attempts,
                )
                if attempt == self._cas_attempts:
                    raise
                task = await self._load_checked(task_id, user_id)

        logger.info(
            "Task %s -> completed user_id=%s blob_ref=%s", task_id, user_id, blob_ref
        )

        view = await asyncio.to_thread(self._tasks.with_assignee_and_mentor, task_id)
        if view is None:
            # Deleted right after completion by a mentor.
            raise NotFound(f"task {task_id} not found")
        return view
