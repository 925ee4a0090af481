# src/mentor_tasks/connectors/console_connector.py

"""
Interactive console: every line is a slash command for the shared registry.
Replies and progress notes are printed with a local timestamp.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..cli.commands import CommandOutcome
from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

PROMPT = "tasks> "
EXIT_COMMANDS = frozenset({"/exit", "/quit", "/q"})


def _stamp(text: str) -> str:
    return f"[{datetime.now().astimezone().strftime('%Y-%m-%d %H:%M:%S')}] {text}"


def _say(text: str) -> None:
    print(_stamp(text), flush=True)


def _banner(state: AppState) -> str:
    store = state.task_store
    users = store.list_users()
    mentors = sum(1 for u in users if u.is_mentor)
    total = store.count_tasks()
    return (
        f"[CONSOLE] {mentors} mentor(s), {len(users) - mentors} intern(s), {total} task(s). "
        "Use /help for commands, /exit to quit."
    )


def run_line(state: AppState, line: str) -> CommandOutcome:
    """Run one line through the registry; a crashing handler gives ok=False instead of raising."""
    try:
        outcome = command_registry.execute(state, line, emit=_say)
    except Exception:
        logger.exception("Command crashed: %r", line)
        return CommandOutcome(ok=False, reply="Internal error while handling a command (see the log file).")
    if outcome.reply is None:
        return CommandOutcome(ok=outcome.ok, reply="Commands start with '/'. Use /help to list them.")
    return outcome


def dispatch_line(state: AppState, line: str) -> str:
    """Reply text for one console line; never raises."""
    return run_line(state, line).reply or ""


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _say(_banner(state))

    while True:
        try:
            line = input(PROMPT).strip()
        except (EOFError, KeyboardInterrupt) as e:
            logger.info("Console closed (%s).", type(e).__name__)
            print()
            break

        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            break

        _say(dispatch_line(state, line))

    logger.info("Console connector finished.")
