# src/mentor_tasks/tasks/distributor.py

from __future__ import annotations

"""
Assignment distributor.

Two entry points share one algorithm (plan a batch, then insert each target
under its idempotency key):

- assign():        a mentor hands a template to an explicit list of interns.
- run_scheduled(): the cron trigger asks for every recurring template of a period;
                   targets are all interns of the template's mentor.

A failure for one user never aborts the batch. Successful inserts stay committed
and the failures are collected in the AssignmentReport.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Callable, Iterable
from dataclasses import replace

from ..core.errors import Forbidden, NotFound, TaskFlowError, ValidationFailed
from ..core.ports import TaskRepo
from .periods import cadence_for_period
from .task_models import (
    AssignmentBatch,
    AssignmentReport,
    AssignmentTarget,
    Cadence,
    Task,
    TaskFilter,
    TaskStatus,
    TaskTemplate,
    User,
)
from .task_store import new_id

logger = logging.getLogger(__name__)

_DAY_SECONDS = 86400.0


def direct_key(template_id: str, user_id: str, generation: int) -> str:
    return f"{template_id}:{user_id}:direct:{generation}"


def direct_generation(key: str) -> int | None:
    """Generation number of a direct key, None for scheduled or malformed keys."""
    head, sep, gen = key.rpartition(":direct:")
    if not sep or not head or not gen.isdigit():
        return None
    return int(gen)


def period_key(template_id: str, user_id: str, period_id: str) -> str:
    return f"{template_id}:{user_id}:{period_id}"


class AssignmentDistributor:
    def __init__(self, task_store: TaskRepo, *, clock: Callable[[], float] = time.time) -> None:
        self._tasks = task_store
        self._clock = clock

    # ---- planning (sync, runs in a worker thread) ----

    def _due_at(self, template: TaskTemplate, now_ts: float, due_at: float | None) -> float | None:
        if due_at is not None:
            return float(due_at)
        if template.due_in_days is not None:
            return now_ts + template.due_in_days * _DAY_SECONDS
        return None

    def _plan_direct(
        self,
        mentor_id: str,
        template_id: str,
        user_ids: list[str],
        due_at: float | None,
    ) -> AssignmentBatch:
        template = self._tasks.get_template(template_id)
        if template is None:
            raise NotFound(f"template {template_id} not found")
        if template.mentor_id != mentor_id:
            raise Forbidden(f"template {template_id} does not belong to mentor {mentor_id}")
        if not template.active:
            raise ValidationFailed(f"template {template_id} is deactivated")

        now_ts = self._clock()
        batch = AssignmentBatch()

        for uid in user_ids:
            user: User | None = self._tasks.get_user(uid)
            if user is None:
                batch.rejected[uid] = "user not found"
                continue
            if user.mentor_id != mentor_id:
                batch.rejected[uid] = f"user is not an intern of mentor {mentor_id}"
                continue

            existing: list[Task] = self._tasks.query_tasks(
                TaskFilter(template_id=template_id, assignee_id=uid)
            )
            if any(t.is_active(now_ts) for t in existing):
                batch.skipped.append(uid)
                continue

            batch.targets.append(
                AssignmentTarget(
                    template=template,
                    user_id=uid,
                    idempotency_key=direct_key(template_id, uid, self._next_generation(existing)),
                    period_id=None,
                    due_at=self._due_at(template, now_ts, due_at),
                )
            )
        return batch

    @staticmethod
    def _next_generation(existing: list[Task]) -> int:
        # Deleted tasks leave gaps, so count from the highest generation in use.
        gens = [g for g in (direct_generation(t.idempotency_key) for t in existing) if g is not None]
        return max(gens) + 1 if gens else 0

    def _replan_direct(self, target: AssignmentTarget) -> AssignmentTarget | None:
        """
        Fresh target after a direct key turned out to be taken.

        None when the user now holds an active task (a concurrent assign won).
        """
        existing: list[Task] = self._tasks.query_tasks(
            TaskFilter(template_id=target.template.id, assignee_id=target.user_id)
        )
        if any(t.is_active(self._clock()) for t in existing):
            return None
        return replace(
            target,
            idempotency_key=direct_key(target.template.id, target.user_id, self._next_generation(existing)),
        )

    def _plan_scheduled(self, period_id: str) -> AssignmentBatch:
        cadence: Cadence | None = cadence_for_period(period_id)
        templates: list[TaskTemplate] = self._tasks.list_recurring_templates(cadence)

        now_ts = self._clock()
        batch = AssignmentBatch()
        interns_by_mentor: dict[str, list[User]] = {}

        for tpl in templates:
            if tpl.mentor_id not in interns_by_mentor:
                interns_by_mentor[tpl.mentor_id] = self._tasks.list_interns(tpl.mentor_id)
            for user in interns_by_mentor[tpl.mentor_id]:
                batch.targets.append(
                    AssignmentTarget(
                        template=tpl,
                        user_id=user.id,
                        idempotency_key=period_key(tpl.id, user.id, period_id),
                        period_id=period_id,
                        due_at=self._due_at(tpl, now_ts, None),
                    )
                )
        return batch

    # ---- execution ----

    def _build_task(self, target: AssignmentTarget) -> Task:
        now_ts = self._clock()
        tpl = target.template
        return Task(
            id=new_id(),
            template_id=tpl.id,
            title=tpl.title,
            description=tpl.description,
            assignee_id=target.user_id,
            mentor_id=tpl.mentor_id,
            status=TaskStatus.PENDING,
            submission_id=None,
            idempotency_key=target.idempotency_key,
            period_id=target.period_id,
            due_at=target.due_at,
            created_at=now_ts,
            updated_at=now_ts,
            version=0,
        )

    async def _distribute(self, batch: AssignmentBatch) -> AssignmentReport:
        report = AssignmentReport(skipped=list(batch.skipped), failures=dict(batch.rejected))

        for target in batch.targets:
            task = self._build_task(target)
            try:
                created = await asyncio.to_thread(
                    self._tasks.insert_if_absent, target.idempotency_key, task
                )
                if not created and target.period_id is None:
                    retry = await asyncio.to_thread(self._replan_direct, target)
                    if retry is not None:
                        logger.info(
                            "Direct key taken, replanned user_id=%s key=%s -> %s",
                            target.user_id,
                            target.idempotency_key,
                            retry.idempotency_key,
                        )
                        task = self._build_task(retry)
                        created = await asyncio.to_thread(
                            self._tasks.insert_if_absent, retry.idempotency_key, task
                        )
            except (TaskFlowError, sqlite3.Error) as e:
                logger.exception(
                    "Assignment failed user_id=%s key=%s", target.user_id, target.idempotency_key
                )
                reason = str(e) or type(e).__name__
                prev = report.failures.get(target.user_id)
                report.failures[target.user_id] = f"{prev}; {reason}" if prev else reason
                continue

            if created:
                report.created.append(task.id)
            else:
                report.skipped.append(target.user_id)

        return report

    # ---- entry points ----

    async def assign(
        self,
        mentor_id: str,
        template_id: str,
        user_ids: Iterable[str],
        *,
        due_at: float | None = None,
    ) -> AssignmentReport:
        """Direct assignment: one task per listed intern, skipping interns with an active task."""
        uids = list(dict.fromkeys(u for u in user_ids if u))
        batch = await asyncio.to_thread(self._plan_direct, mentor_id, template_id, uids, due_at)
        report = await self._distribute(batch)
        logger.info(
            "Direct assignment template=%s mentor=%s created=%d skipped=%d failed=%d",
            template_id,
            mentor_id,
            len(report.created),
            len(report.skipped),
            len(report.failures),
        )
        return report

    async def run_scheduled(self, period_id: str) -> AssignmentReport:
        """
        Scheduled assignment for one period.

        Safe to call any number of times for the same period_id: every target is
        keyed by (template, user, period) and inserted only if absent.
        """
        period_id = (period_id or "").strip()
        if not period_id:
            raise ValidationFailed("period_id is required")

        batch = await asyncio.to_thread(self._plan_scheduled, period_id)
        report = await self._distribute(batch)
        logger.info(
            "Scheduled assignment period=%s targets=%d created=%d skipped=%d failed=%d",
            period_id,
            len(batch.targets),
            len(report.created),
            len(report.skipped),
            len(report.failures),
        )
        return report
