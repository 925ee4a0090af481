# src/mentor_tasks/cli/main.py

"""
CLI entrypoint.

    mentor-tasks                 interactive console (+ background scheduler if enabled)
    mentor-tasks /cron 2026-W43  run one command and exit (for system cron, scripts)
"""

from __future__ import annotations

import logging
import shlex
import signal
import sys
import threading

from ..config import Settings, get_settings
from ..connectors.console_connector import run_console_loop, run_line
from ..core.state import AppState
from ..logging_setup import level_from_name, setup_logging
from ..tasks.task_scheduler import start_scheduler_in_background
from .bootstrap import create_initial_state

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handle)
        except (ValueError, OSError):
            logger.debug("Cannot install handler for signal %s", sig)


def run_once(state: AppState, argv: list[str]) -> int:
    line = shlex.join(argv)
    if not line.startswith("/"):
        line = "/" + line
    outcome = run_line(state, line)
    print(outcome.reply)
    return 0 if outcome.ok else 1


def run_service(state: AppState, settings: Settings) -> int:
    scheduler = start_scheduler_in_background(state)
    stop = threading.Event()
    _install_signal_handlers(stop)

    try:
        if settings.console_enabled:
            run_console_loop(state)
        elif scheduler is not None:
            logger.info("Console disabled; scheduler running. Press Ctrl+C to stop.")
            stop.wait()
        else:
            logger.warning("Console and scheduler are both disabled; nothing to do.")
    finally:
        if scheduler is not None:
            scheduler.stop()
            scheduler.join(timeout=10.0)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    settings = get_settings()

    setup_logging(log_dir=settings.data_dir, console_level=level_from_name(settings.log_level))
    logger.info("Starting %s (%s)...", settings.app_name, "one-shot" if args else "service")

    state = create_initial_state(settings=settings)
    try:
        return run_once(state, args) if args else run_service(state, settings)
    finally:
        state.task_store.close()
        logger.info("Bye.")


if __name__ == "__main__":
    sys.exit(main())
