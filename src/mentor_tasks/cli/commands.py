# src/mentor_tasks/cli/commands.py

from __future__ import annotations

import asyncio
import inspect
import logging
import mimetypes
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import cast

from ..core.errors import TaskFlowError
from ..core.state import AppState
from ..tasks import task_api
from ..tasks.periods import period_id_for
from ..tasks.task_models import AssignmentReport, Cadence, TaskStats, TaskView

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandUsage(Exception):
    """Raised by a handler when its arguments are wrong; the message is the reply."""


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    ok: bool
    reply: str | None


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /assign, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """Reply text for a line like "/command args", or None if it is not a command."""
        return self.execute(state, line, emit).reply

    def execute(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> CommandOutcome:
        """
        Run a line like "/command args".

        ok is False for parse errors, unknown commands, usage errors and domain
        errors; a non-command line gives ok=True with reply None. Other
        exceptions propagate.

        Arguments are split shell-style, so "/adduser 'Ada Lovelace' backend" works.
        """
        if not line.startswith("/"):
            return CommandOutcome(ok=True, reply=None)

        try:
            parts = shlex.split(line[1:])
        except ValueError as e:
            return CommandOutcome(ok=False, reply=f"Cannot parse command: {e}")
        if not parts:
            return CommandOutcome(ok=False, reply="Empty command. Use /help to list available commands.")

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return CommandOutcome(
                ok=False, reply=f"Unknown command: /{name}. Use /help to list available commands."
            )

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                reply = cast(CommandHandler3, handler)(state, args, emit)
            else:
                reply = cast(CommandHandler2, handler)(state, args)
        except CommandUsage as e:
            return CommandOutcome(ok=False, reply=str(e))
        except TaskFlowError as e:
            logger.debug("Command /%s failed: %s", name, e.message)
            return CommandOutcome(ok=False, reply=f"[{e.kind.value}] {e.message}")
        return CommandOutcome(ok=True, reply=reply)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def _fmt_view(v: TaskView) -> str:
    t = v.task
    who = v.assignee.fullname if v.assignee else t.assignee_id
    line = f"{t.id}  [{t.status.value:<10}] {t.title}  -> {who}"
    if t.period_id:
        line += f"  (period {t.period_id})"
    if t.due_at is not None:
        line += f"  due {_ts_local(t.due_at)}"
    if v.submission is not None:
        line += f"  file={v.submission.filename}"
    return line


def _fmt_stats(s: TaskStats) -> str:
    return f"total={s.total} pending={s.pending} incomplete={s.incomplete} completed={s.completed}"


def _fmt_report(r: AssignmentReport) -> str:
    lines = [f"created={len(r.created)} skipped={len(r.skipped)} failed={len(r.failures)}"]
    for uid, why in r.failures.items():
        lines.append(f"  ! {uid}: {why}")
    return "\n".join(lines)


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_users(state: AppState, args: list[str]) -> str:
    """
    /users            -> all users
    /users <mentor>   -> interns of a mentor
    """
    users = task_api.list_interns(state, args[0]) if args else state.task_store.list_users()
    if not users:
        return "No users."
    lines = []
    for u in users:
        role = "mentor" if u.is_mentor else f"intern of {u.mentor_id}"
        lines.append(f"{u.id}  {u.fullname} [{u.domain or '-'}] ({role})")
    return "\n".join(lines)


def cmd_adduser(state: AppState, args: list[str]) -> str:
    if not args:
        raise CommandUsage("Usage: /adduser <fullname> [domain] [mentor_id]")
    payload = {
        "fullname": args[0],
        "domain": args[1] if len(args) > 1 else "",
        "mentor_id": args[2] if len(args) > 2 else None,
    }
    user = task_api.register_user(state, payload)
    return f"User created: {user.id} ({'mentor' if user.is_mentor else 'intern'})"


def cmd_template(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise CommandUsage("Usage: /template <mentor_id> <title> [description] [daily|weekly|monthly|-] [due_in_days]")
    cadence = args[3] if len(args) > 3 and args[3] != "-" else None
    payload = {
        "mentor_id": args[0],
        "title": args[1],
        "description": args[2] if len(args) > 2 else "",
        "cadence": cadence,
        "due_in_days": int(args[4]) if len(args) > 4 and args[4].isdigit() else None,
    }
    tpl = task_api.create_template(state, payload)
    kind = f"recurring ({tpl.cadence.value})" if tpl.cadence else "one-off"
    return f"Template created: {tpl.id} {kind}"


def cmd_templates(state: AppState, args: list[str]) -> str:
    templates = state.task_store.list_templates(mentor_id=args[0] if args else None)
    if not templates:
        return "No templates."
    return "\n".join(
        f"{t.id}  {t.title} [{t.cadence.value if t.cadence else 'one-off'}]"
        f"{'' if t.active else ' (inactive)'}"
        for t in templates
    )


def cmd_assign(state: AppState, args: list[str]) -> str:
    if len(args) < 3:
        raise CommandUsage("Usage: /assign <mentor_id> <template_id> <user_id> [user_id...]")
    report = asyncio.run(
        task_api.assign_template(
            state, {"mentor_id": args[0], "template_id": args[1], "user_ids": args[2:]}
        )
    )
    return _fmt_report(report)


def cmd_tasks(state: AppState, args: list[str]) -> str:
    if not args:
        raise CommandUsage("Usage: /tasks <user_id>")
    views = task_api.list_user_tasks(state, args[0])
    return "\n".join(_fmt_view(v) for v in views) if views else "No tasks."


def cmd_mentortasks(state: AppState, args: list[str]) -> str:
    if not args:
        raise CommandUsage("Usage: /mentortasks <mentor_id>")
    views = task_api.list_mentor_tasks(state, args[0])
    return "\n".join(_fmt_view(v) for v in views) if views else "No tasks."


def cmd_submit(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) < 3:
        raise CommandUsage("Usage: /submit <task_id> <user_id> <path>")
    path = Path(args[2]).expanduser()
    try:
        content = path.read_bytes()
    except OSError as e:
        raise CommandUsage(f"Cannot read {path}: {e}") from e

    if emit:
        emit(f"[SUBMIT] Uploading {path.name} ({len(content)} bytes)...")

    ctype = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    view = asyncio.run(
        task_api.submit_evidence(
            state,
            {
                "task_id": args[0],
                "user_id": args[1],
                "filename": path.name,
                "content": content,
                "content_type": ctype,
            },
        )
    )
    return "Submitted: " + _fmt_view(view)


def cmd_stats(state: AppState, args: list[str]) -> str:
    if not args:
        raise CommandUsage("Usage: /stats <user_id>")
    return _fmt_stats(task_api.get_user_stats(state, args[0]))


def cmd_overview(state: AppState, args: list[str]) -> str:
    if not args:
        raise CommandUsage("Usage: /overview <mentor_id>")
    overview = task_api.get_mentor_overview(state, args[0])
    if not overview:
        return "No interns."
    return "\n".join(f"{uid}  {_fmt_stats(s)}" for uid, s in overview.items())


def cmd_incomplete(state: AppState, args: list[str]) -> str:
    if not args:
        raise CommandUsage("Usage: /incomplete <task_id> [mentor_id]")
    view = asyncio.run(task_api.mark_incomplete(state, args[0], args[1] if len(args) > 1 else None))
    return _fmt_view(view)


def cmd_reset(state: AppState, args: list[str]) -> str:
    if not args:
        raise CommandUsage("Usage: /reset <task_id> [mentor_id]")
    view = asyncio.run(task_api.reset_pending(state, args[0], args[1] if len(args) > 1 else None))
    return _fmt_view(view)


def cmd_reopen(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise CommandUsage("Usage: /reopen <task_id> <mentor_id>")
    return _fmt_view(asyncio.run(task_api.reopen_task(state, args[0], args[1])))


def cmd_edit(state: AppState, args: list[str]) -> str:
    if len(args) < 3:
        raise CommandUsage("Usage: /edit <task_id> <mentor_id> <title|-> [description]")
    payload = {
        "title": None if args[2] == "-" else args[2],
        "description": args[3] if len(args) > 3 else None,
    }
    return _fmt_view(asyncio.run(task_api.edit_task(state, args[0], args[1], payload)))


def cmd_delete(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise CommandUsage("Usage: /delete <task_id> <mentor_id>")
    refs = asyncio.run(task_api.delete_task(state, args[0], args[1]))
    return f"Task deleted ({len(refs)} file(s) released)."


def cmd_cron(state: AppState, args: list[str]) -> str:
    """
    /cron           -> run the scheduled distribution for the current period
    /cron <period>  -> run it for an explicit period id (e.g. 2026-W43, W1)
    """
    if args:
        period_id = args[0]
    else:
        cadence = Cadence(getattr(state.settings, "scheduler_cadence", Cadence.WEEKLY.value))
        period_id = period_id_for(time.time(), cadence)
    report = asyncio.run(task_api.run_scheduled(state, period_id))
    return f"Period {period_id}: " + _fmt_report(report)


def cmd_gc(state: AppState, args: list[str]) -> str:
    removed = asyncio.run(task_api.collect_orphaned_blobs(state))
    return f"Removed {len(removed)} orphaned file(s)."


registry.register("help", cmd_help, "Show this help", aliases=["h", "?"])
registry.register("users", cmd_users, "List users (or the interns of a mentor)")
registry.register("adduser", cmd_adduser, "Add a user: /adduser <fullname> [domain] [mentor_id]")
registry.register("template", cmd_template, "Create a task template")
registry.register("templates", cmd_templates, "List task templates")
registry.register("assign", cmd_assign, "Assign a template to interns")
registry.register("tasks", cmd_tasks, "List the tasks of a user")
registry.register("mentortasks", cmd_mentortasks, "List the tasks a mentor assigned")
registry.register("submit", cmd_submit, "Submit a file as evidence for a task")
registry.register("stats", cmd_stats, "Show task stats of a user")
registry.register("overview", cmd_overview, "Show stats for every intern of a mentor")
registry.register("incomplete", cmd_incomplete, "Mark a pending task incomplete")
registry.register("reset", cmd_reset, "Move an incomplete task back to pending")
registry.register("reopen", cmd_reopen, "Reopen a completed task (mentor override)")
registry.register("edit", cmd_edit, "Edit title/description of a task")
registry.register("delete", cmd_delete, "Delete a task")
registry.register("cron", cmd_cron, "Run the scheduled distribution for a period")
registry.register("gc", cmd_gc, "Remove stored files no submission references")
