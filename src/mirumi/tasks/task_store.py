# src/mirumi/tasks/task_store.py

from __future__ import annotations

import logging
import re
import sqlite3
import time
import uuid
from typing import Any

from ..db.gateway import Database
from ..errors import AuditWriteError, NotFoundError, StorageFailure, ValidationError
from .audit import ACTION_TABLE, record_action, row_to_action
from .patcher import NOTE_FIELDS, TASK_FIELDS, build_assignments
from .task_models import (
    UNSET,
    ActionKind,
    CreateTaskInput,
    EndType,
    NotePatch,
    RunHistory,
    SidebarCounts,
    Task,
    TaskMemo,
    TaskNote,
    TaskPatch,
    TaskPriority,
    TaskStatus,
    TimeExtension,
)

logger = logging.getLogger(__name__)

TASK_TABLE = "tbl_task"
TAG_TABLE = "tbl_task_tag"
MEMO_TABLE = "tbl_task_memo"
NOTE_TABLE = "tbl_task_note"
RUN_TABLE = "tbl_task_run_history"
EXTENSION_TABLE = "tbl_task_time_extension"

_ID_PREFIX_RE = re.compile(r"^[0-9a-fA-F-]{1,36}$")

# Statuses that still show up in the working list.
_OPEN_STATUSES = (TaskStatus.INBOX, TaskStatus.IN_PROGRESS, TaskStatus.PAUSED)
_CLOSED_STATUSES_SQL = "('COMPLETED', 'ARCHIVED')"


def _opt_int(v: Any) -> int | None:
    return int(v) if v is not None else None


def _opt_float(v: Any) -> float | None:
    return float(v) if v is not None else None


class TaskStore:
    """
    Task lifecycle engine.

    Owns the rules for mutating tasks and for turning status / target date
    changes into audit entries:
    - create() records CREATED,
    - apply_update() records at most one status action and at most one
      TARGET_DATE_CHANGED, each only when the value really changed.

    Audit entries are written after the field update has committed. If that
    second write fails the edit is kept and AuditWriteError is raised.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ---- row mapping ----

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=row["description"],
            url=row["url"],
            external_message_ref=row["external_message_ref"],
            priority=TaskPriority.from_db(row["priority"]),
            status=TaskStatus.from_db(row["status"]),
            total_time_spent=int(row["total_time_spent"] or 0),
            expected_duration=_opt_int(row["expected_duration"]),
            remaining_time_seconds=_opt_int(row["remaining_time_seconds"]),
            target_date=row["target_date"],
            is_important=int(row["is_important"] or 0) != 0,
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            completed_at=_opt_float(row["completed_at"]),
            last_paused_at=_opt_float(row["last_paused_at"]),
            last_run_at=_opt_float(row["last_run_at"]),
        )

    @staticmethod
    def _row_to_memo(row: sqlite3.Row) -> TaskMemo:
        return TaskMemo(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            content=str(row["content"]),
            created_at=float(row["created_at"] or 0.0),
        )

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> TaskNote:
        return TaskNote(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            title=str(row["title"]),
            content=str(row["content"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> RunHistory:
        return RunHistory(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            started_at=float(row["started_at"] or 0.0),
            ended_at=_opt_float(row["ended_at"]),
            duration=int(row["duration"] or 0),
            end_type=EndType.from_db(row["end_type"]),
        )

    @staticmethod
    def _row_to_extension(row: sqlite3.Row) -> TimeExtension:
        return TimeExtension(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            added_minutes=int(row["added_minutes"]),
            previous_duration=int(row["previous_duration"]),
            new_duration=int(row["new_duration"]),
            reason=row["reason"],
            created_at=float(row["created_at"] or 0.0),
        )

    # ---- low-level helpers ----

    def _hydrate(self, conn: sqlite3.Connection, task: Task) -> Task:
        by_task = "task_id = ?"
        params = (task.id,)
        db = self._db

        task.tags = [
            str(r["tag"])
            for r in db.read_many(
                TAG_TABLE, where=by_task, params=params, order_by="created_at, rowid", conn=conn
            )
        ]
        task.memos = [
            self._row_to_memo(r)
            for r in db.read_many(
                MEMO_TABLE, where=by_task, params=params, order_by="created_at DESC, rowid DESC", conn=conn
            )
        ]
        task.notes = [
            self._row_to_note(r)
            for r in db.read_many(
                NOTE_TABLE, where=by_task, params=params, order_by="created_at DESC, rowid DESC", conn=conn
            )
        ]
        task.run_history = [
            self._row_to_run(r)
            for r in db.read_many(
                RUN_TABLE, where=by_task, params=params, order_by="started_at DESC, rowid DESC", conn=conn
            )
        ]
        task.time_extensions = [
            self._row_to_extension(r)
            for r in db.read_many(
                EXTENSION_TABLE,
                where=by_task,
                params=params,
                order_by="created_at DESC, rowid DESC",
                conn=conn,
            )
        ]
        task.action_history = [
            row_to_action(r)
            for r in db.read_many(
                ACTION_TABLE, where=by_task, params=params, order_by="created_at DESC, rowid DESC", conn=conn
            )
        ]
        return task

    def _require_task(self, conn: sqlite3.Connection, task_id: str) -> sqlite3.Row:
        row = self._db.read_one(
            TASK_TABLE,
            where="id = ?",
            params=(task_id,),
            columns=("id", "status", "target_date"),
            conn=conn,
        )
        if row is None:
            raise NotFoundError(f"task not found: {task_id}")
        return row

    def _insert_tag(self, conn: sqlite3.Connection, task_id: str, tag: str) -> bool:
        clean = (tag or "").strip()
        if not clean:
            raise ValidationError("tag must not be empty")
        written = self._db.insert(
            TAG_TABLE,
            {"id": str(uuid.uuid4()), "task_id": task_id, "tag": clean, "created_at": time.time()},
            or_ignore=True,
            conn=conn,
        )
        return written == 1

    # ---- public API: tasks ----

    def create_task(self, data: CreateTaskInput) -> str:
        title = (data.title or "").strip()
        if not title:
            raise ValidationError("title is required")
        try:
            priority = TaskPriority(data.priority)
        except ValueError as e:
            raise ValidationError(f"invalid priority: {data.priority!r}") from e
        if data.expected_duration is not None and data.expected_duration < 0:
            raise ValidationError("expected_duration must be >= 0")

        task_id = str(uuid.uuid4())
        now = time.time()

        with self._db.transaction() as conn:
            self._db.insert(
                TASK_TABLE,
                {
                    "id": task_id,
                    "title": title,
                    "description": data.description,
                    "url": data.url,
                    "external_message_ref": data.external_message_ref,
                    "priority": priority.value,
                    "status": TaskStatus.INBOX.value,
                    "total_time_spent": 0,
                    "expected_duration": data.expected_duration,
                    "target_date": data.target_date,
                    "is_important": 1 if data.is_important else 0,
                    "created_at": now,
                    "updated_at": now,
                },
                conn=conn,
            )
            for tag in data.tags or []:
                self._insert_tag(conn, task_id, tag)
            record_action(
                self._db,
                task_id,
                ActionKind.CREATED,
                previous_status=None,
                new_status=TaskStatus.INBOX.value,
                conn=conn,
            )

        logger.info("Task created id=%s title=%r", task_id, title)
        return task_id

    def get_task(self, task_id: str) -> Task:
        with self._db.transaction() as conn:
            row = self._db.read_one(TASK_TABLE, where="id = ?", params=(task_id,), conn=conn)
            if row is None:
                raise NotFoundError(f"task not found: {task_id}")
            return self._hydrate(conn, self._row_to_task(row))

    def list_tasks(self, status: TaskStatus | str | None = None) -> list[Task]:
        """All tasks (optionally of one status), important first, then newest first."""
        where: str | None = None
        params: tuple[Any, ...] = ()
        if status is not None:
            try:
                params = (TaskStatus(status).value,)
            except ValueError as e:
                raise ValidationError(f"invalid status filter: {status!r}") from e
            where = "status = ?"

        with self._db.transaction() as conn:
            rows = self._db.read_many(
                TASK_TABLE,
                where=where,
                params=params,
                order_by="is_important DESC, created_at DESC, rowid DESC",
                conn=conn,
            )
            return [self._hydrate(conn, self._row_to_task(r)) for r in rows]

    def apply_update(self, task_id: str, patch: TaskPatch) -> None:
        """
        Apply a sparse patch and record the audit entries it implies.

        Fields left UNSET keep their stored value; updated_at is always
        stamped.
        """
        assignments = build_assignments(patch, TASK_FIELDS)

        with self._db.transaction() as conn:
            before = self._require_task(conn, task_id)
            self._db.patch(
                TASK_TABLE,
                assignments.sql,
                assignments.params,
                where="id = ?",
                where_params=(task_id,),
                conn=conn,
            )

        previous_status: str | None = before["status"]
        previous_target: str | None = before["target_date"]
        pending: list[dict[str, Any]] = []

        if patch.status is not UNSET:
            new_status = TaskStatus(patch.status).value
            if new_status != previous_status:
                pending.append(
                    {
                        "kind": ActionKind.for_status(new_status),
                        "previous_status": previous_status,
                        "new_status": new_status,
                    }
                )

        if patch.target_date is not UNSET and patch.target_date != previous_target:
            metadata: dict[str, Any] = {}
            if previous_target is not None:
                metadata["previousTargetDate"] = previous_target
            metadata["newTargetDate"] = patch.target_date
            pending.append({"kind": ActionKind.TARGET_DATE_CHANGED, "metadata": metadata})

        logger.debug("Task updated id=%s fields=%s audit=%d", task_id, assignments.columns, len(pending))
        if not pending:
            return

        try:
            with self._db.transaction() as conn:
                for entry in pending:
                    kind = entry.pop("kind")
                    record_action(self._db, task_id, kind, conn=conn, **entry)
        except StorageFailure as e:
            logger.error("Audit write failed after update task_id=%s: %s", task_id, e)
            raise AuditWriteError(f"task {task_id} updated but audit entry was not written: {e}", task_id=task_id) from e

    def delete_task(self, task_id: str) -> None:
        """Delete a task; every child row goes with it (ON DELETE CASCADE)."""
        n = self._db.delete(TASK_TABLE, where="id = ?", params=(task_id,))
        if n == 0:
            raise NotFoundError(f"task not found: {task_id}")
        logger.info("Task deleted id=%s", task_id)

    def find_task_ids(self, prefix: str, limit: int = 5) -> list[str]:
        """Ids starting with `prefix` (lets the console accept short ids)."""
        if not _ID_PREFIX_RE.match(prefix or ""):
            raise ValidationError(f"invalid task id: {prefix!r}")
        rows = self._db.read_many(
            TASK_TABLE,
            where="id LIKE ?",
            params=(f"{prefix.lower()}%",),
            order_by="created_at DESC",
        )
        return [str(r["id"]) for r in rows[: max(1, int(limit))]]

    # ---- lifecycle helpers ----

    def start_task(self, task_id: str) -> None:
        self.apply_update(
            task_id,
            TaskPatch(status=TaskStatus.IN_PROGRESS, remaining_time_seconds=None),
        )

    def pause_task(self, task_id: str, remaining_seconds: int, *, total_time_spent: int | None = None) -> None:
        patch = TaskPatch(
            status=TaskStatus.PAUSED,
            remaining_time_seconds=int(remaining_seconds),
            last_paused_at=time.time(),
        )
        if total_time_spent is not None:
            patch.total_time_spent = int(total_time_spent)
        self.apply_update(task_id, patch)

    def complete_task(self, task_id: str, *, total_time_spent: int | None = None) -> None:
        patch = TaskPatch(
            status=TaskStatus.COMPLETED,
            completed_at=time.time(),
            remaining_time_seconds=None,
        )
        if total_time_spent is not None:
            patch.total_time_spent = int(total_time_spent)
        self.apply_update(task_id, patch)

    def archive_task(self, task_id: str, *, total_time_spent: int | None = None) -> None:
        patch = TaskPatch(status=TaskStatus.ARCHIVED)
        if total_time_spent is not None:
            patch.total_time_spent = int(total_time_spent)
        self.apply_update(task_id, patch)

    def restore_task(self, task_id: str, *, total_time_spent: int | None = None) -> None:
        patch = TaskPatch(status=TaskStatus.INBOX, completed_at=None)
        if total_time_spent is not None:
            patch.total_time_spent = int(total_time_spent)
        self.apply_update(task_id, patch)

    # ---- public API: tags / memos / notes ----

    def add_tag(self, task_id: str, tag: str) -> bool:
        """Attach a tag. Returns False if the task already had it."""
        with self._db.transaction() as conn:
            self._require_task(conn, task_id)
            return self._insert_tag(conn, task_id, tag)

    def remove_tag(self, task_id: str, tag: str) -> None:
        self._db.delete(TAG_TABLE, where="task_id = ? AND tag = ?", params=(task_id, (tag or "").strip()))

    def add_memo(self, task_id: str, content: str) -> TaskMemo:
        text = (content or "").strip()
        if not text:
            raise ValidationError("memo must not be empty")
        memo = TaskMemo(id=str(uuid.uuid4()), task_id=task_id, content=text, created_at=time.time())
        with self._db.transaction() as conn:
            self._require_task(conn, task_id)
            self._db.insert(
                MEMO_TABLE,
                {"id": memo.id, "task_id": task_id, "content": memo.content, "created_at": memo.created_at},
                conn=conn,
            )
        return memo

    def add_note(self, task_id: str, title: str, content: str) -> TaskNote:
        clean_title = (title or "").strip()
        if not clean_title:
            raise ValidationError("note title must not be empty")
        now = time.time()
        note = TaskNote(
            id=str(uuid.uuid4()),
            task_id=task_id,
            title=clean_title,
            content=content or "",
            created_at=now,
            updated_at=now,
        )
        with self._db.transaction() as conn:
            self._require_task(conn, task_id)
            self._db.insert(
                NOTE_TABLE,
                {
                    "id": note.id,
                    "task_id": task_id,
                    "title": note.title,
                    "content": note.content,
                    "created_at": note.created_at,
                    "updated_at": note.updated_at,
                },
                conn=conn,
            )
        return note

    def update_note(self, note_id: str, patch: NotePatch) -> TaskNote:
        assignments = build_assignments(patch, NOTE_FIELDS)
        with self._db.transaction() as conn:
            n = self._db.patch(
                NOTE_TABLE,
                assignments.sql,
                assignments.params,
                where="id = ?",
                where_params=(note_id,),
                conn=conn,
            )
            if n == 0:
                raise NotFoundError(f"note not found: {note_id}")
            row = self._db.read_one(NOTE_TABLE, where="id = ?", params=(note_id,), conn=conn)
            if row is None:
                raise NotFoundError(f"note not found: {note_id}")
        return self._row_to_note(row)

    # ---- aggregates ----

    def sidebar_counts(self) -> SidebarCounts:
        """Counts per sidebar section. Date buckets use the local date of target_date."""
        open_sql = ", ".join(f"'{s.value}'" for s in _OPEN_STATUSES)
        not_closed = f"status NOT IN {_CLOSED_STATUSES_SQL}"
        local_target = "date(target_date, 'localtime')"
        with self._db.transaction() as conn:
            count = self._db.count
            return SidebarCounts(
                inbox=count(TASK_TABLE, where=f"status IN ({open_sql})", conn=conn),
                completed=count(TASK_TABLE, where="status = 'COMPLETED'", conn=conn),
                starred=count(TASK_TABLE, where=f"is_important = 1 AND {not_closed}", conn=conn),
                today=count(
                    TASK_TABLE,
                    where=f"{local_target} = date('now', 'localtime') AND {not_closed}",
                    conn=conn,
                ),
                tomorrow=count(
                    TASK_TABLE,
                    where=f"{local_target} = date('now', 'localtime', '+1 day') AND {not_closed}",
                    conn=conn,
                ),
                overdue=count(
                    TASK_TABLE,
                    where=f"{local_target} < date('now', 'localtime') AND {not_closed}",
                    conn=conn,
                ),
                archive=count(TASK_TABLE, where="status = 'ARCHIVED'", conn=conn),
            )
