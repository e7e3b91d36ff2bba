# src/mirumi/db/schema.py

"""
Schema and its evolution.

`run_migrations` runs each time a database file is selected (init or
load) and must stay idempotent:
- create tables / indexes if missing,
- use PRAGMA table_info to detect columns missing on older files,
- add those columns with ALTER TABLE only when needed,
- seed default settings with INSERT OR IGNORE,
- stamp PRAGMA user_version.
"""

from __future__ import annotations

import logging
import sqlite3
import time

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

TABLE_PREFIX = "tbl_"

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS tbl_setting (
        id TEXT PRIMARY KEY,
        key TEXT UNIQUE NOT NULL,
        value TEXT,
        updated_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_setting_key ON tbl_setting(key)",
    """
    CREATE TABLE IF NOT EXISTS tbl_task (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        url TEXT,
        external_message_ref TEXT,
        priority TEXT NOT NULL DEFAULT 'MEDIUM',
        status TEXT NOT NULL DEFAULT 'INBOX',
        total_time_spent INTEGER NOT NULL DEFAULT 0,
        expected_duration INTEGER DEFAULT 5,
        remaining_time_seconds INTEGER,
        target_date TEXT,
        is_important INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        completed_at REAL,
        last_paused_at REAL,
        last_run_at REAL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_status ON tbl_task(status)",
    "CREATE INDEX IF NOT EXISTS idx_task_priority ON tbl_task(priority)",
    "CREATE INDEX IF NOT EXISTS idx_task_target_date ON tbl_task(target_date)",
    "CREATE INDEX IF NOT EXISTS idx_task_is_important ON tbl_task(is_important)",
    """
    CREATE TABLE IF NOT EXISTS tbl_task_tag (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        tag TEXT NOT NULL,
        created_at REAL NOT NULL,
        FOREIGN KEY(task_id) REFERENCES tbl_task(id) ON DELETE CASCADE
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_task_tag_task_tag ON tbl_task_tag(task_id, tag)",
    "CREATE INDEX IF NOT EXISTS idx_task_tag_tag ON tbl_task_tag(tag)",
    """
    CREATE TABLE IF NOT EXISTS tbl_task_memo (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at REAL NOT NULL,
        FOREIGN KEY(task_id) REFERENCES tbl_task(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_memo_task_id ON tbl_task_memo(task_id)",
    """
    CREATE TABLE IF NOT EXISTS tbl_task_note (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        FOREIGN KEY(task_id) REFERENCES tbl_task(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_note_task_id ON tbl_task_note(task_id)",
    """
    CREATE TABLE IF NOT EXISTS tbl_task_run_history (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        started_at REAL NOT NULL,
        ended_at REAL,
        duration INTEGER NOT NULL DEFAULT 0,
        end_type TEXT NOT NULL,
        FOREIGN KEY(task_id) REFERENCES tbl_task(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_run_history_task_id ON tbl_task_run_history(task_id)",
    """
    CREATE TABLE IF NOT EXISTS tbl_task_time_extension (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        added_minutes INTEGER NOT NULL,
        previous_duration INTEGER NOT NULL,
        new_duration INTEGER NOT NULL,
        reason TEXT,
        created_at REAL NOT NULL,
        FOREIGN KEY(task_id) REFERENCES tbl_task(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_time_extension_task_id "
    "ON tbl_task_time_extension(task_id)",
    """
    CREATE TABLE IF NOT EXISTS tbl_task_action_history (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        action_type TEXT NOT NULL,
        previous_status TEXT,
        new_status TEXT,
        metadata TEXT,
        created_at REAL NOT NULL,
        FOREIGN KEY(task_id) REFERENCES tbl_task(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_action_history_task_id "
    "ON tbl_task_action_history(task_id)",
    "CREATE INDEX IF NOT EXISTS idx_task_action_history_action_type "
    "ON tbl_task_action_history(action_type)",
    "CREATE INDEX IF NOT EXISTS idx_task_action_history_created_at "
    "ON tbl_task_action_history(created_at)",
)

# Columns that appeared after the first release; older files get them once.
LATE_TASK_COLUMNS: tuple[tuple[str, str], ...] = (
    ("url", "TEXT"),
    ("external_message_ref", "TEXT"),
    ("remaining_time_seconds", "INTEGER"),
    ("target_date", "TEXT"),
    ("is_important", "INTEGER NOT NULL DEFAULT 0"),
    ("last_paused_at", "REAL"),
    ("last_run_at", "REAL"),
)

DEFAULT_SETTINGS: tuple[tuple[str, str], ...] = (
    ("schema_version", str(SCHEMA_VERSION)),
    ("theme", '"system"'),
    ("language", '"ko"'),
    ("timer_default_minutes", "5"),
    ("notification_sound", "true"),
    ("notification_vibration", "true"),
)


def run_migrations(conn: sqlite3.Connection) -> None:
    """Bring `conn`'s database to the current schema. Safe to call repeatedly."""
    cur = conn.cursor()
    cur.execute("PRAGMA foreign_keys = ON")

    # Tables first; indexes may reference late columns added below.
    indexes = [s for s in SCHEMA_STATEMENTS if not s.lstrip().startswith("CREATE TABLE")]
    for stmt in SCHEMA_STATEMENTS:
        if stmt not in indexes:
            cur.execute(stmt)

    cur.execute("PRAGMA table_info(tbl_task)")
    cols = {row[1] for row in cur.fetchall()}

    def add_col(name: str, decl: str) -> None:
        if name in cols:
            return
        cur.execute(f"ALTER TABLE tbl_task ADD COLUMN {name} {decl}")
        cols.add(name)
        logger.info("Schema migration: added column tbl_task.%s", name)

    for name, decl in LATE_TASK_COLUMNS:
        add_col(name, decl)

    for stmt in indexes:
        cur.execute(stmt)

    now = time.time()
    for key, value in DEFAULT_SETTINGS:
        cur.execute(
            """
            INSERT OR IGNORE INTO tbl_setting (id, key, value, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (f"setting_{key}", key, value, now),
        )

    cur.execute(f"PRAGMA user_version = {int(SCHEMA_VERSION)}")
    conn.commit()


def list_tables(conn: sqlite3.Connection) -> list[str]:
    cur = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND substr(name, 1, ?) = ? ORDER BY name",
        (len(TABLE_PREFIX), TABLE_PREFIX),
    )
    return [str(row[0]) for row in cur.fetchall()]
