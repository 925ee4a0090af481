# src/mentor_tasks/tasks/task_scheduler.py

from __future__ import annotations

"""
Scheduler trigger.

The cron route (or anything else that fires on a cadence) calls
trigger_scheduled(distributor, period_id). That is the whole contract; calling it
again for the same period is harmless.

run_assignment_scheduler() is an optional in-process caller of that contract:
a small polling loop that computes the current period id from a clock and
triggers it. It is just another concurrent caller of the distributor.
"""

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..core.state import AppState
from .distributor import AssignmentDistributor
from .periods import period_id_for
from .task_models import AssignmentReport, Cadence

logger = logging.getLogger(__name__)


async def trigger_scheduled(distributor: AssignmentDistributor, period_id: str) -> AssignmentReport:
    """Entry point for the cron route."""
    logger.info("Scheduled trigger period=%s", period_id)
    return await distributor.run_scheduled(period_id)


async def run_assignment_scheduler(
        distributor: AssignmentDistributor,
        *,
        cadence: Cadence = Cadence.WEEKLY,
        interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
        stop_event: asyncio.Event | None = None,
) -> None:
    """
    Simple polling scheduler.

    Every interval_seconds:
    - compute the current period id for `cadence` from `clock`
    - trigger the distributor for it, unless that period already ran cleanly

    A period whose run reported failures (or raised) is triggered again on the
    next tick. To stop, set stop_event or cancel the coroutine.
    """
    sleep_s = max(0.01, float(interval_seconds))
    done_period: str | None = None

    while stop_event is None or not stop_event.is_set():
        period_id = period_id_for(clock(), cadence)

        if period_id != done_period:
            try:
                report = await trigger_scheduled(distributor, period_id)
            except Exception:
                logger.exception("Scheduled run failed period=%s", period_id)
            else:
                if report.ok:
                    done_period = period_id
                else:
                    logger.warning(
                        "Scheduled run period=%s had %d failure(s); will retry",
                        period_id,
                        len(report.failures),
                    )

        if stop_event is None:
            await asyncio.sleep(sleep_s)
        else:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)


@dataclass(slots=True)
class SchedulerBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal scheduler stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_scheduler_in_background(state: AppState) -> SchedulerBackgroundRunner | None:
    """
    Run the polling scheduler in a background thread with its own event loop,
    so the blocking console REPL can run in the main thread.
    """
    settings = state.settings
    if not getattr(settings, "scheduler_enabled", False):
        logger.info("Scheduler disabled, not starting.")
        return None

    cadence = Cadence(getattr(settings, "scheduler_cadence", Cadence.WEEKLY.value))
    interval = float(getattr(settings, "scheduler_interval_seconds", 300.0))

    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(
                run_assignment_scheduler(
                    state.distributor,
                    cadence=cadence,
                    interval_seconds=interval,
                    stop_event=stop_event,
                )
            )
        finally:
            with contextlib.suppress(RuntimeError):
                loop.stop()
            with contextlib.suppress(RuntimeError):
                loop.close()

    t = threading.Thread(target=runner, name="assignment-scheduler", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Scheduler thread did not initialize properly.")
        return None

    logger.info("Scheduler background thread started cadence=%s interval=%.0fs", cadence.value, interval)
    return SchedulerBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
