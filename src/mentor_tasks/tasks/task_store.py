# src/mentor_tasks/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any

from ..core.errors import ConcurrentModification, NotFound, ValidationFailed
from .lifecycle import apply_fields
from .task_models import (
    Cadence,
    Submission,
    Task,
    TaskFilter,
    TaskStatus,
    TaskTemplate,
    TaskView,
    User,
)

logger = logging.getLogger(__name__)

# Columns a compare_and_swap() may touch. Everything else is fixed at creation.
_MUTABLE_TASK_FIELDS = frozenset({"title", "description", "status", "submission_id", "due_at"})


def new_id() -> str:
    return uuid.uuid4().hex


class TaskStore:
    """
    SQLite store for users, task templates, tasks and submissions.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Concurrency:
    - each method opens its own SQLite connection
    - task writes go through compare_and_swap() on the integer `version` column,
      inside a BEGIN IMMEDIATE transaction together with the submission rows
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    fullname TEXT NOT NULL,
                    domain TEXT NOT NULL DEFAULT '',
                    mentor_id TEXT REFERENCES users(id),
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS templates (
                    id TEXT PRIMARY KEY,
                    mentor_id TEXT NOT NULL REFERENCES users(id),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    cadence TEXT,
                    due_in_days INTEGER,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    template_id TEXT NOT NULL REFERENCES templates(id),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    assignee_id TEXT NOT NULL REFERENCES users(id),
                    mentor_id TEXT NOT NULL REFERENCES users(id),
                    status TEXT NOT NULL DEFAULT 'pending',
                    submission_id TEXT,
                    idempotency_key TEXT NOT NULL UNIQUE,
                    period_id TEXT,
                    due_at REAL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS submissions (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    blob_ref TEXT NOT NULL,
                    filename TEXT NOT NULL DEFAULT '',
                    content_type TEXT NOT NULL DEFAULT 'application/octet-stream',
                    size INTEGER NOT NULL DEFAULT 0,
                    submitted_at REAL NOT NULL,
                    superseded_at REAL
                )
                """
            )

            # Migrations (safe): add missing columns.
            def add_col(table: str, name: str, decl: str) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s.%s", table, name)

            add_col("tasks", "period_id", "TEXT")
            add_col("tasks", "due_at", "REAL")
            add_col("tasks", "version", "INTEGER NOT NULL DEFAULT 0")
            add_col("templates", "due_in_days", "INTEGER")
            add_col("templates", "active", "INTEGER NOT NULL DEFAULT 1")
            add_col("submissions", "superseded_at", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assignee_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_mentor ON tasks(mentor_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_template ON tasks(template_id, assignee_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_users_mentor ON users(mentor_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_submissions_task ON submissions(task_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            fullname=str(row["fullname"] or ""),
            domain=str(row["domain"] or ""),
            mentor_id=row["mentor_id"],
            created_at=float(row["created_at"] or 0.0),
        )

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> TaskTemplate:
        cadence = row["cadence"]
        return TaskTemplate(
            id=str(row["id"]),
            mentor_id=str(row["mentor_id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            cadence=Cadence(cadence) if cadence else None,
            due_in_days=int(row["due_in_days"]) if row["due_in_days"] is not None else None,
            active=bool(row["active"]),
            created_at=float(row["created_at"] or 0.0),
        )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            template_id=str(row["template_id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            assignee_id=str(row["assignee_id"]),
            mentor_id=str(row["mentor_id"]),
            status=TaskStatus.from_db(row["status"]),
            submission_id=row["submission_id"],
            idempotency_key=str(row["idempotency_key"]),
            period_id=row["period_id"],
            due_at=float(row["due_at"]) if row["due_at"] is not None else None,
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            version=int(row["version"] or 0),
        )

    @staticmethod
    def _row_to_submission(row: sqlite3.Row, prefix: str = "") -> Submission:
        return Submission(
            id=str(row[f"{prefix}id"]),
            task_id=str(row[f"{prefix}task_id"]),
            user_id=str(row[f"{prefix}user_id"]),
            blob_ref=str(row[f"{prefix}blob_ref"]),
            filename=str(row[f"{prefix}filename"] or ""),
            content_type=str(row[f"{prefix}content_type"] or ""),
            size=int(row[f"{prefix}size"] or 0),
            submitted_at=float(row[f"{prefix}submitted_at"] or 0.0),
            superseded_at=(
                float(row[f"{prefix}superseded_at"])
                if row[f"{prefix}superseded_at"] is not None
                else None
            ),
        )

    # ---- users ----

    def add_user(
        self,
        *,
        fullname: str,
        domain: str = "",
        mentor_id: str | None = None,
        user_id: str | None = None,
    ) -> User:
        if not fullname or not fullname.strip():
            raise ValidationFailed("fullname is required")

        user = User(
            id=user_id or new_id(),
            fullname=fullname.strip(),
            domain=(domain or "").strip(),
            mentor_id=mentor_id,
            created_at=time.time(),
        )
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO users(id, fullname, domain, mentor_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.id, user.fullname, user.domain, user.mentor_id, user.created_at),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise ValidationFailed(f"cannot add user {user.fullname!r}: {e}") from e
        finally:
            conn.close()
        logger.debug("User added id=%s mentor_id=%s", user.id, user.mentor_id)
        return user

    def get_user(self, user_id: str) -> User | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None
        finally:
            conn.close()

    def list_users(self) -> list[User]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at ASC").fetchall()
            return [self._row_to_user(r) for r in rows]
        finally:
            conn.close()

    def list_interns(self, mentor_id: str) -> list[User]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM users WHERE mentor_id = ? ORDER BY created_at ASC",
                (mentor_id,),
            ).fetchall()
            return [self._row_to_user(r) for r in rows]
        finally:
            conn.close()

    # ---- templates ----

    def add_template(
        self,
        *,
        mentor_id: str,
        title: str,
        description: str = "",
        cadence: Cadence | None = None,
        due_in_days: int | None = None,
    ) -> TaskTemplate:
        if not title or not title.strip():
            raise ValidationFailed("title is required")

        tpl = TaskTemplate(
            id=new_id(),
            mentor_id=mentor_id,
            title=title.strip(),
            description=(description or "").strip(),
            cadence=cadence,
            due_in_days=due_in_days,
            active=True,
            created_at=time.time(),
        )
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO templates(id, mentor_id, title, description, cadence, due_in_days, active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    tpl.id,
                    tpl.mentor_id,
                    tpl.title,
                    tpl.description,
                    tpl.cadence.value if tpl.cadence else None,
                    tpl.due_in_days,
                    tpl.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("Template added id=%s mentor_id=%s cadence=%s", tpl.id, mentor_id, cadence)
        return tpl

    def get_template(self, template_id: str) -> TaskTemplate | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM templates WHERE id = ?", (template_id,)).fetchone()
            return self._row_to_template(row) if row else None
        finally:
            conn.close()

    def list_templates(self, *, mentor_id: str | None = None) -> list[TaskTemplate]:
        conn = self._get_conn()
        try:
            if mentor_id is None:
                rows = conn.execute("SELECT * FROM templates ORDER BY created_at ASC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM templates WHERE mentor_id = ? ORDER BY created_at ASC",
                    (mentor_id,),
                ).fetchall()
            return [self._row_to_template(r) for r in rows]
        finally:
            conn.close()

    def list_recurring_templates(self, cadence: Cadence | None = None) -> list[TaskTemplate]:
        """Active templates with a cadence; all cadences when `cadence` is None."""
        conn = self._get_conn()
        try:
            if cadence is None:
                rows = conn.execute(
                    "SELECT * FROM templates WHERE active = 1 AND cadence IS NOT NULL ORDER BY created_at ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM templates WHERE active = 1 AND cadence = ? ORDER BY created_at ASC",
                    (cadence.value,),
                ).fetchall()
            return [self._row_to_template(r) for r in rows]
        finally:
            conn.close()

    def set_template_active(self, template_id: str, active: bool) -> None:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE templates SET active = ? WHERE id = ?",
                (1 if active else 0, template_id),
            )
            conn.commit()
            if cur.rowcount != 1:
                raise NotFound(f"template {template_id} not found")
        finally:
            conn.close()

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    @staticmethod
    def _filter_sql(flt: TaskFilter, alias: str = "") -> tuple[str, list[Any]]:
        p = f"{alias}." if alias else ""
        where: list[str] = []
        params: list[Any] = []
        if flt.assignee_id is not None:
            where.append(f"{p}assignee_id = ?")
            params.append(flt.assignee_id)
        if flt.mentor_id is not None:
            where.append(f"{p}mentor_id = ?")
            params.append(flt.mentor_id)
        if flt.template_id is not None:
            where.append(f"{p}template_id = ?")
            params.append(flt.template_id)
        if flt.status is not None:
            where.append(f"{p}status = ?")
            params.append(flt.status.value)
        if flt.period_id is not None:
            where.append(f"{p}period_id = ?")
            params.append(flt.period_id)

        sql = (" WHERE " + " AND ".join(where)) if where else ""
        sql += f" ORDER BY {p}created_at ASC, {p}id ASC"
        if flt.limit is not None:
            sql += " LIMIT ?"
            params.append(int(flt.limit))
        return sql, params

    def query_tasks(self, flt: TaskFilter) -> list[Task]:
        where, params = self._filter_sql(flt)
        conn = self._get_conn()
        try:
            rows = conn.execute(f"SELECT * FROM tasks{where}", params).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def insert_if_absent(self, idempotency_key: str, task: Task) -> bool:
        """
        Insert `task` unless a task with the same idempotency key exists.

        Returns True if the row was created by this caller.
        """
        # Stored copy carries the key; the caller's object is left alone.
        task = apply_fields(task, {"idempotency_key": idempotency_key})

        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO tasks(
                    id, template_id, title, description,
                    assignee_id, mentor_id, status, submission_id,
                    idempotency_key, period_id, due_at,
                    created_at, updated_at, version
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(idempotency_key) DO NOTHING
                """,
                (
                    task.id,
                    task.template_id,
                    task.title,
                    task.description,
                    task.assignee_id,
                    task.mentor_id,
                    task.status.value,
                    task.submission_id,
                    idempotency_key,
                    task.period_id,
                    task.due_at,
                    task.created_at,
                    task.updated_at,
                    task.version,
                ),
            )
            conn.commit()
            created = cur.rowcount == 1
        finally:
            conn.close()

        if created:
            logger.debug("Task inserted id=%s key=%s", task.id, idempotency_key)
        return created

    def compare_and_swap(
        self,
        task_id: str,
        expected_version: int,
        fields: dict[str, Any],
        *,
        submission: Submission | None = None,
        keep_history: bool = True,
    ) -> Task:
        """
        Apply `fields` to the task iff its version is still `expected_version`.

        In the same transaction:
        - a new `submission` row is inserted (if given),
        - the previously referenced submission is superseded (or deleted when
          keep_history is False) whenever the reference changes.

        Raises NotFound if the task is gone and ConcurrentModification on a
        version mismatch. Returns the task as written.
        """
        bad = set(fields) - _MUTABLE_TASK_FIELDS
        if bad:
            raise ValueError(f"compare_and_swap cannot change {sorted(bad)}")

        now = time.time()
        conn = self._get_conn()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
                if row is None:
                    raise NotFound(f"task {task_id} not found")

                current = self._row_to_task(row)
                if current.version != expected_version:
                    raise ConcurrentModification(
                        f"task {task_id} changed (version {current.version}, expected {expected_version})"
                    )

                updated = apply_fields(
                    current,
                    {**fields, "updated_at": now, "version": current.version + 1},
                )

                if submission is not None:
                    conn.execute(
                        """
                        INSERT INTO submissions(
                            id, task_id, user_id, blob_ref, filename,
                            content_type, size, submitted_at, superseded_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL)
                        """,
                        (
                            submission.id,
                            submission.task_id,
                            submission.user_id,
                            submission.blob_ref,
                            submission.filename,
                            submission.content_type,
                            int(submission.size),
                            submission.submitted_at,
                        ),
                    )

                previous = current.submission_id
                if previous is not None and previous != updated.submission_id:
                    if keep_history:
                        conn.execute(
                            "UPDATE submissions SET superseded_at = ? WHERE id = ?",
                            (now, previous),
                        )
                    else:
                        conn.execute("DELETE FROM submissions WHERE id = ?", (previous,))

                sets = [f"{name} = ?" for name in fields]
                params: list[Any] = [
                    v.value if isinstance(v, TaskStatus) else v for v in fields.values()
                ]
                sets += ["updated_at = ?", "version = version + 1"]
                params += [now, task_id, expected_version]
                cur = conn.execute(
                    f"UPDATE tasks SET {', '.join(sets)} WHERE id = ? AND version = ?",
                    params,
                )
                if cur.rowcount != 1:
                    raise ConcurrentModification(f"task {task_id} changed during update")

                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

        logger.debug(
            "Task cas id=%s version=%s->%s status=%s",
            task_id,
            expected_version,
            updated.version,
            updated.status.value,
        )
        return updated

    def delete_task(self, task_id: str) -> list[str]:
        """
        Delete a task with all its submissions.

        Returns the blob references the deleted submissions pointed to; the
        caller decides whether to release them or leave them for garbage collection.
        """
        conn = self._get_conn()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT id FROM tasks WHERE id = ?", (task_id,)).fetchone()
                if row is None:
                    raise NotFound(f"task {task_id} not found")
                refs = [
                    str(r["blob_ref"])
                    for r in conn.execute(
                        "SELECT blob_ref FROM submissions WHERE task_id = ?", (task_id,)
                    ).fetchall()
                ]
                conn.execute("DELETE FROM submissions WHERE task_id = ?", (task_id,))
                conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

        logger.info("Task deleted id=%s orphaned_blobs=%d", task_id, len(refs))
        return refs

    # ---- joins ----

    _VIEW_SELECT = """
        SELECT t.*,
               a.id AS a_id, a.fullname AS a_fullname, a.domain AS a_domain,
               a.mentor_id AS a_mentor_id, a.created_at AS a_created_at,
               m.id AS m_id, m.fullname AS m_fullname, m.domain AS m_domain,
               m.mentor_id AS m_mentor_id, m.created_at AS m_created_at,
               s.id AS s_id, s.task_id AS s_task_id, s.user_id AS s_user_id,
               s.blob_ref AS s_blob_ref, s.filename AS s_filename,
               s.content_type AS s_content_type, s.size AS s_size,
               s.submitted_at AS s_submitted_at, s.superseded_at AS s_superseded_at
        FROM tasks t
        LEFT JOIN users a ON a.id = t.assignee_id
        LEFT JOIN users m ON m.id = t.mentor_id
        LEFT JOIN submissions s ON s.id = t.submission_id
    """

    def _row_to_view(self, row: sqlite3.Row) -> TaskView:
        def user(prefix: str) -> User | None:
            if row[f"{prefix}id"] is None:
                return None
            return User(
                id=str(row[f"{prefix}id"]),
                fullname=str(row[f"{prefix}fullname"] or ""),
                domain=str(row[f"{prefix}domain"] or ""),
                mentor_id=row[f"{prefix}mentor_id"],
                created_at=float(row[f"{prefix}created_at"] or 0.0),
            )

        sub = self._row_to_submission(row, prefix="s_") if row["s_id"] is not None else None
        return TaskView(
            task=self._row_to_task(row),
            assignee=user("a_"),
            mentor=user("m_"),
            submission=sub,
        )

    def with_assignee_and_mentor(self, task_id: str) -> TaskView | None:
        conn = self._get_conn()
        try:
            row = conn.execute(self._VIEW_SELECT + " WHERE t.id = ?", (task_id,)).fetchone()
            return self._row_to_view(row) if row else None
        finally:
            conn.close()

    def query_task_views(self, flt: TaskFilter) -> list[TaskView]:
        where, params = self._filter_sql(flt, alias="t")
        conn = self._get_conn()
        try:
            rows = conn.execute(self._VIEW_SELECT + where, params).fetchall()
            return [self._row_to_view(r) for r in rows]
        finally:
            conn.close()

    # ---- submissions ----

    def get_submission(self, submission_id: str) -> Submission | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
            return self._row_to_submission(row) if row else None
        finally:
            conn.close()

    def list_submissions(self, task_id: str) -> list[Submission]:
        """All submissions of a task, oldest first (superseded ones included)."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM submissions WHERE task_id = ? ORDER BY submitted_at ASC, rowid ASC",
                (task_id,),
            ).fetchall()
            return [self._row_to_submission(r) for r in rows]
        finally:
            conn.close()

    def list_blob_refs(self) -> set[str]:
        """Every blob reference still recorded by a submission row."""
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT DISTINCT blob_ref FROM submissions").fetchall()
            return {str(r["blob_ref"]) for r in rows}
        finally:
            conn.close()
