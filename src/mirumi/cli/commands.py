# src/mirumi/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, cast

from ..core.state import AppState
from ..errors import MirumiError, NotFoundError, ValidationError
from ..tasks import task_api
from ..tasks.task_models import CreateTaskInput, NotePatch, Task, TaskPatch
from ..timer.coordinator import format_title

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry used by the console connector (/help, /add, /start, ...)."""

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

    def handle(self, state: AppState, line: str, emit: CommandEmitter | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Core failures (MirumiError) become the reply text; the caller keeps
        running either way.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except MirumiError as e:
            logger.info("/%s failed: %s: %s", name, type(e).__name__, e)
            return f"Error ({type(e).__name__}): {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting helpers ----


def _ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _minutes(seconds: int) -> str:
    m, s = divmod(max(0, int(seconds)), 60)
    return f"{m}m{s:02d}s"


def _task_line(task: Task) -> str:
    star = "* " if task.is_important else ""
    tags = f" #{' #'.join(task.tags)}" if task.tags else ""
    due = f" due {task.target_date}" if task.target_date else ""
    return f"{task.id[:8]} [{task.status.value}] {star}{task.title} ({task.priority.value}){due}{tags}"


def _task_detail(task: Task) -> str:
    lines = [
        _task_line(task),
        f"  id: {task.id}",
        f"  expected: {task.expected_duration if task.expected_duration is not None else '-'} min"
        f"  spent: {_minutes(task.total_time_spent)}",
    ]
    if task.remaining_time_seconds is not None:
        lines.append(f"  paused with {_minutes(task.remaining_time_seconds)} left")
    if task.description:
        lines.append(f"  description: {task.description}")
    if task.url:
        lines.append(f"  url: {task.url}")
    lines.append(f"  created: {_ts(task.created_at)}  updated: {_ts(task.updated_at)}")
    if task.completed_at is not None:
        lines.append(f"  completed: {_ts(task.completed_at)}")

    if task.memos:
        lines.append("  memos:")
        lines.extend(f"    - {m.content} ({_ts(m.created_at)})" for m in task.memos)
    if task.notes:
        lines.append("  notes:")
        lines.extend(f"    - {n.id[:8]} {n.title}: {n.content}" for n in task.notes)
    if task.run_history:
        lines.append("  runs:")
        for r in task.run_history:
            lines.append(f"    - {_ts(r.started_at)} -> {_ts(r.ended_at)} {_minutes(r.duration)} {r.end_type.value}")
    if task.time_extensions:
        lines.append("  extensions:")
        for x in task.time_extensions:
            why = f" ({x.reason})" if x.reason else ""
            lines.append(f"    - +{x.added_minutes} min: {x.previous_duration} -> {x.new_duration}{why}")
    if task.action_history:
        lines.append("  history:")
        for a in task.action_history:
            change = ""
            if a.previous_status or a.new_status:
                change = f" {a.previous_status or '-'} -> {a.new_status or '-'}"
            meta = f" {a.metadata}" if a.metadata else ""
            lines.append(f"    - {_ts(a.created_at)} {a.action_type.value}{change}{meta}")
    return "\n".join(lines)


def resolve_task_id(state: AppState, token: str) -> str:
    """Accept a full id or a unique id prefix."""
    matches = state.task_store.find_task_ids(token, limit=2)
    if not matches:
        raise NotFoundError(f"task not found: {token}")
    if len(matches) > 1:
        raise ValidationError(f"ambiguous task id prefix: {token}")
    return matches[0]


def _need(args: list[str], n: int, usage: str) -> None:
    if len(args) < n:
        raise ValidationError(f"usage: {usage}")


_NULL_WORDS = {"-", "none", "null"}


def _nullable(value: str) -> str | None:
    return None if value.lower() in _NULL_WORDS else value


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise ValidationError(f"expected yes/no, got {value!r}")


def _parse_int(value: str, what: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ValidationError(f"{what} must be an integer, got {value!r}") from e


def _patch_for(field_name: str, raw: str) -> TaskPatch:
    """Build a one-field patch from console input."""
    name = field_name.lower()
    if name == "title":
        return TaskPatch(title=raw)
    if name in ("description", "desc"):
        return TaskPatch(description=_nullable(raw))
    if name == "url":
        return TaskPatch(url=_nullable(raw))
    if name == "priority":
        return TaskPatch(priority=raw.upper())
    if name == "status":
        return TaskPatch(status=raw.upper())
    if name in ("due", "target_date"):
        return TaskPatch(target_date=_nullable(raw))
    if name in ("important", "star"):
        return TaskPatch(is_important=_parse_bool(raw))
    if name in ("expected", "expected_duration"):
        v = _nullable(raw)
        return TaskPatch(expected_duration=None if v is None else _parse_int(v, "expected"))
    raise ValidationError(f"unknown field: {field_name}")


# ---- handlers ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_db(state: AppState, args: list[str]) -> str:
    """
    /db status          -> selected database
    /db init [path]     -> create/select a database (default path if omitted)
    /db open <path>     -> select an existing database file
    /db logout          -> deselect
    """
    sub = args[0].lower() if args else "status"

    if sub == "init":
        st = state.db.init(args[1] if len(args) > 1 else None)
    elif sub in ("open", "load"):
        _need(args, 2, "/db open <path>")
        st = state.db.load_existing(args[1])
    elif sub == "logout":
        state.db.logout()
        return "Database deselected."
    elif sub == "status":
        st = state.db.status()
    else:
        return "Usage: /db status | /db init [path] | /db open <path> | /db logout"

    if not st.configured:
        return f"No database selected. Default location: {st.path}"
    size = f"{st.size_bytes} bytes" if st.size_bytes is not None else "missing"
    return f"Database: {st.path} ({size})\n  tables: {', '.join(st.tables) or '-'}"


def cmd_add(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/add <title>")
    task_id = state.task_store.create_task(CreateTaskInput(title=" ".join(args)))
    return f"Created {task_id[:8]}."


def cmd_list(state: AppState, args: list[str]) -> str:
    tasks = state.task_store.list_tasks(args[0].upper() if args else None)
    if not tasks:
        return "No tasks."
    return "\n".join(_task_line(t) for t in tasks)


def cmd_show(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/show <id>")
    return _task_detail(state.task_store.get_task(resolve_task_id(state, args[0])))


def cmd_set(state: AppState, args: list[str]) -> str:
    _need(args, 3, "/set <id> <field> <value>")
    task_id = resolve_task_id(state, args[0])
    return _task_line(task_api.update_task(state, task_id, _patch_for(args[1], " ".join(args[2:]))))


def cmd_start(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    _need(args, 1, "/start <id>")
    task = task_api.start_focus(state, resolve_task_id(state, args[0]))
    remaining, _ = state.timer.query()
    return f"Started: {format_title(task.title, remaining)}"


def cmd_pause(state: AppState, args: list[str]) -> str:
    task = task_api.pause_focus(state)
    if task is None:
        return "Nothing is running."
    left = task.remaining_time_seconds or 0
    return f"Paused {task.id[:8]} with {_minutes(left)} left."


def cmd_done(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/done <id>")
    task = task_api.complete_task(state, resolve_task_id(state, args[0]))
    return f"Completed {task.id[:8]} (spent {_minutes(task.total_time_spent)})."


def cmd_archive(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/archive <id>")
    task_id = resolve_task_id(state, args[0])
    task_api.archive_task(state, task_id)
    return f"Archived {task_id[:8]}."


def cmd_restore(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/restore <id>")
    task_id = resolve_task_id(state, args[0])
    task_api.restore_task(state, task_id)
    return f"Restored {task_id[:8]} to inbox."


def cmd_delete(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/delete <id>")
    task_id = resolve_task_id(state, args[0])
    task_api.delete_task(state, task_id)
    return f"Deleted {task_id[:8]}."


def cmd_tag(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/tag <id> <tag>")
    task_id = resolve_task_id(state, args[0])
    added = state.task_store.add_tag(task_id, args[1])
    return f"Tagged {task_id[:8]} #{args[1]}." if added else f"{task_id[:8]} already has #{args[1]}."


def cmd_untag(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/untag <id> <tag>")
    task_id = resolve_task_id(state, args[0])
    state.task_store.remove_tag(task_id, args[1])
    return f"Removed #{args[1]} from {task_id[:8]}."


def cmd_memo(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/memo <id> <text>")
    memo = state.task_store.add_memo(resolve_task_id(state, args[0]), " ".join(args[1:]))
    return f"Memo added ({_ts(memo.created_at)})."


def cmd_note(state: AppState, args: list[str]) -> str:
    """
    /note <id> <title> | <content>      -> add a note
    /note edit <note_id> <title> | <content>
    """
    if args and args[0].lower() == "edit":
        _need(args, 3, "/note edit <note_id> <title> | <content>")
        title, sep, content = " ".join(args[2:]).partition("|")
        patch = NotePatch(title=title.strip()) if title.strip() else NotePatch()
        if sep:
            patch.content = content.strip()
        note = state.task_store.update_note(args[1], patch)
        return f"Note {note.id[:8]} updated."

    _need(args, 2, "/note <id> <title> | <content>")
    title, _, content = " ".join(args[1:]).partition("|")
    note = state.task_store.add_note(resolve_task_id(state, args[0]), title.strip(), content.strip())
    return f"Note {note.id} added."


def cmd_extend(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/extend <id> <minutes> [reason]")
    task = task_api.extend_task(
        state,
        resolve_task_id(state, args[0]),
        _parse_int(args[1], "minutes"),
        " ".join(args[2:]) or None,
    )
    return f"{task.id[:8]} now expects {task.expected_duration} min."


def cmd_timer(state: AppState, args: list[str]) -> str:
    snap = state.timer.snapshot()
    mode = "running" if snap.running else "stopped"
    return f"Timer {mode}: {format_title(snap.label, snap.remaining_seconds)}"


def cmd_counts(state: AppState, args: list[str]) -> str:
    c = state.task_store.sidebar_counts()
    return (
        f"inbox {c.inbox} | today {c.today} | tomorrow {c.tomorrow} | overdue {c.overdue}"
        f" | starred {c.starred} | completed {c.completed} | archive {c.archive}"
    )


def cmd_tables(state: AppState, args: list[str]) -> str:
    return "\n".join(state.db.list_tables()) or "No tables."


def cmd_table(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    _need(args, 1, "/table <name> [limit]")
    limit = _parse_int(args[1], "limit") if len(args) > 1 else 20
    dump = state.db.query_table(args[0], limit=limit)
    if emit:
        with contextlib.suppress(Exception):
            emit(f"[{args[0]}] {len(dump.rows)} row(s)")
    lines = [" | ".join(dump.columns)]
    lines.extend(" | ".join(_cell(v) for v in row) for row in dump.rows)
    return "\n".join(lines)


def _cell(v: Any) -> str:
    return "NULL" if v is None else str(v)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("db", cmd_db, help_text="Database: /db status | init [path] | open <path> | logout.")
registry.register("add", cmd_add, help_text="Create a task: /add <title>.")
registry.register("list", cmd_list, help_text="List tasks: /list [status].", aliases=["ls"])
registry.register("show", cmd_show, help_text="Task details and history: /show <id>.")
registry.register("set", cmd_set, help_text="Edit a field: /set <id> <field> <value> (- clears).")
registry.register("start", cmd_start, help_text="Start/resume a task on the timer: /start <id>.")
registry.register("pause", cmd_pause, help_text="Pause the running task.")
registry.register("done", cmd_done, help_text="Complete a task: /done <id>.")
registry.register("archive", cmd_archive, help_text="Archive a task: /archive <id>.")
registry.register("restore", cmd_restore, help_text="Move a task back to the inbox: /restore <id>.")
registry.register("delete", cmd_delete, help_text="Delete a task and its history: /delete <id>.")
registry.register("tag", cmd_tag, help_text="Add a tag: /tag <id> <tag>.")
registry.register("untag", cmd_untag, help_text="Remove a tag: /untag <id> <tag>.")
registry.register("memo", cmd_memo, help_text="Add a memo: /memo <id> <text>.")
registry.register("note", cmd_note, help_text="Add/edit a note: /note <id> <title> | <content>.")
registry.register("extend", cmd_extend, help_text="Add time: /extend <id> <minutes> [reason].")
registry.register("timer", cmd_timer, help_text="Show the countdown.")
registry.register("counts", cmd_counts, help_text="Sidebar counts.")
registry.register("tables", cmd_tables, help_text="List database tables.")
registry.register("table", cmd_table, help_text="Browse a table: /table <name> [limit].")
