# src/mentor_tasks/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the blob backend and the task storage swappable and makes testing easier.
"""

from typing import Any, Awaitable, Protocol

BlobMetadata = dict[str, Any]
# {"task_id": ..., "user_id": ..., "filename": ..., "content_type": ...}


class BlobStore(Protocol):
    """
    Evidence file storage.

    store() returns a stable reference for the content, or raises StorageFailure.
    The backend is opaque to the core; only the reference is persisted.
    """

    def store(self, content: bytes, metadata: BlobMetadata) -> Awaitable[str]: ...


class TaskRepo(Protocol):
    # Users / templates (read side for the distributor)
    def get_user(self, user_id: str) -> Any | None: ...
    def list_interns(self, mentor_id: str) -> list[Any]: ...
    def get_template(self, template_id: str) -> Any | None: ...
    def list_recurring_templates(self, cadence: Any | None = None) -> list[Any]: ...

    # Tasks
    def get_task(self, task_id: str) -> Any | None: ...
    def query_tasks(self, flt: Any) -> list[Any]: ...
    def insert_if_absent(self, idempotency_key: str, task: Any) -> bool: ...
    def compare_and_swap(
            self,
            task_id: str,
            expected_version: int,
            fields: dict[str, Any],
            *,
            submission: Any | None = None,
            keep_history: bool = True,
    ) -> Any: ...

    # Explicit join (task + assignee + mentor + active submission)
    def with_assignee_and_mentor(self, task_id: str) -> Any | None: ...
