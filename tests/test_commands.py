# tests/test_commands.py

from __future__ import annotations

from pathlib import Path

from mentor_tasks.cli.commands import CommandRegistry, registry
from mentor_tasks.cli.main import run_once
from mentor_tasks.connectors import console_connector
from mentor_tasks.tasks import task_api
from mentor_tasks.tasks.task_models import TaskFilter, TaskStatus


def test_command_registry_routes_2_and_3_params(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}

    def h2(state, args):
        called["h2"] += 1
        return "h2:" + ",".join(args)

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    assert reg.handle(state, "/a x 'y z'") == "h2:x,y z"
    assert reg.handle(state, "/bee y", emit=lambda _: None) == "h3"
    assert called == {"h2": 1, "h3": 1}


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Cannot parse" in (reg.handle(state, "/a 'unterminated") or "")
    assert reg.execute(state, "hello").ok
    assert not reg.execute(state, "/nope").ok


def test_domain_errors_become_replies(state, seeded) -> None:
    reply = registry.handle(state, f"/assign {seeded.a.id} {seeded.template.id} {seeded.b.id}")
    assert reply is not None and reply.startswith("[forbidden]")

    reply = registry.handle(state, "/stats ghost")
    assert reply is not None and reply.startswith("[not_found]")


def test_assign_submit_and_stats_from_the_console(state, store, seeded, tmp_path: Path) -> None:
    reply = registry.handle(state, f"/assign {seeded.mentor.id} {seeded.template.id} {seeded.a.id} ghost")
    assert reply is not None and "created=1" in reply and "! ghost" in reply

    task = store.query_tasks(TaskFilter(assignee_id=seeded.a.id))[0]
    evidence = tmp_path / "report.pdf"
    evidence.write_bytes(b"%PDF")
    notes: list[str] = []

    reply = registry.handle(state, f"/submit {task.id} {seeded.a.id} {evidence}", emit=notes.append)
    assert reply is not None and reply.startswith("Submitted:")
    assert notes and "report.pdf" in notes[0]

    reread = store.get_task(task.id)
    assert reread is not None and reread.status == TaskStatus.COMPLETED
    assert registry.handle(state, f"/stats {seeded.a.id}") == "total=1 pending=0 incomplete=0 completed=1"


def test_cron_with_explicit_period(state, store, seeded) -> None:
    first = registry.handle(state, "/cron W1")
    again = registry.handle(state, "/cron W1")

    assert first is not None and "created=2" in first
    assert again is not None and "created=0 skipped=2" in again
    assert store.count_tasks() == 2


def test_help_lists_commands(state) -> None:
    reply = registry.handle(state, "/help") or ""
    for name in ("assign", "submit", "cron", "overview"):
        assert f"/{name}" in reply


def test_console_dispatch_never_raises(state, monkeypatch) -> None:
    assert "Commands start with '/'" in console_connector.dispatch_line(state, "hello")

    def boom(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(console_connector.command_registry, "execute", boom)
    assert "Internal error" in console_connector.dispatch_line(state, "/help")


def test_one_shot_cron(state, store, seeded, capsys) -> None:
    assert run_once(state, ["cron", "W7"]) == 0
    assert "Period W7: created=2" in capsys.readouterr().out
    assert store.count_tasks() == 2

    assert run_once(state, ["/stats", "ghost"]) == 1


def test_one_shot_usage_and_unknown_commands_fail(state, capsys) -> None:
    assert run_once(state, ["/stats"]) == 1
    assert "Usage: /stats" in capsys.readouterr().out

    assert run_once(state, ["/nope"]) == 1
    assert "Unknown command" in capsys.readouterr().out


def test_one_shot_crash_exits_nonzero(state, seeded, monkeypatch, capsys) -> None:
    def boom(*_args, **_kwargs):
        raise RuntimeError("scheduler down")

    monkeypatch.setattr(task_api, "run_scheduled", boom)

    assert run_once(state, ["/cron", "W1"]) == 1
    assert "Internal error" in capsys.readouterr().out
