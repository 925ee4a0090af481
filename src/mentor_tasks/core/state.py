# src/mentor_tasks/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..tasks.blob_store import LocalBlobStore
    from ..tasks.distributor import AssignmentDistributor
    from ..tasks.submission import SubmissionPipeline
    from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: object

    task_store: TaskStore
    blob_store: LocalBlobStore
    pipeline: SubmissionPipeline
    distributor: AssignmentDistributor
