# src/mirumi/db/gateway.py

from __future__ import annotations

import contextlib
import logging
import re
import sqlite3
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from ..errors import NotConfiguredError, NotFoundError, StorageFailure, ValidationError
from . import schema

logger = logging.getLogger(__name__)

T = TypeVar("T")

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_BROWSABLE_TABLE_RE = re.compile(r"^tbl_[A-Za-z0-9_]+$")


@dataclass(frozen=True, slots=True)
class DbStatus:
    configured: bool
    path: str
    exists: bool
    size_bytes: int | None
    tables: list[str]


@dataclass(frozen=True, slots=True)
class TableRows:
    """Generic table dump used by the table browser."""

    columns: list[str]
    rows: list[list[Any]]


def _ident(name: str) -> str:
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise ValidationError(f"invalid identifier: {name!r}")
    return name


class Database:
    """
    SQLite persistence gateway.

    Holds which database file is selected (none until `init` or
    `load_existing`). Every call opens its own short-lived connection, so the
    gateway is safe to share between threads; each public call is one
    transaction unless an outer `transaction()` connection is passed in.
    """

    def __init__(self, *, default_path: str | Path) -> None:
        self._default_path = Path(default_path)
        self._db_path: Path | None = None
        self._select_lock = threading.Lock()

    # ---- datastore selection ----

    @property
    def path(self) -> Path | None:
        with self._select_lock:
            return self._db_path

    @property
    def is_configured(self) -> bool:
        return self.path is not None

    def init(self, path: str | Path | None = None) -> DbStatus:
        """Create (if needed) and select a database file, then migrate it."""
        db_path = Path(path).expanduser() if path else self._default_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._migrate(db_path)
        self._select(db_path)
        logger.info("Database initialised path=%s", db_path)
        return self.status()

    def load_existing(self, path: str | Path) -> DbStatus:
        db_path = Path(path).expanduser()
        if not db_path.exists():
            raise NotFoundError(f"database file does not exist: {db_path}")
        self._migrate(db_path)
        self._select(db_path)
        logger.info("Database loaded path=%s", db_path)
        return self.status()

    def logout(self) -> None:
        self._select(None)
        logger.info("Database deselected")

    def status(self) -> DbStatus:
        db_path = self.path
        if db_path is None:
            return DbStatus(
                configured=False,
                path=str(self._default_path),
                exists=False,
                size_bytes=None,
                tables=[],
            )

        exists = db_path.exists()
        size_bytes: int | None = None
        tables: list[str] = []
        if exists:
            with contextlib.suppress(OSError):
                size_bytes = db_path.stat().st_size
            tables = self.list_tables()
        return DbStatus(
            configured=True,
            path=str(db_path),
            exists=exists,
            size_bytes=size_bytes,
            tables=tables,
        )

    def _select(self, db_path: Path | None) -> None:
        with self._select_lock:
            self._db_path = db_path

    def _migrate(self, db_path: Path) -> None:
        try:
            conn = self._connect(db_path)
        except sqlite3.Error as e:
            raise StorageFailure(f"cannot open {db_path}: {e}") from e
        try:
            schema.run_migrations(conn)
        except sqlite3.Error as e:
            raise StorageFailure(f"schema migration failed: {e}") from e
        finally:
            conn.close()

    # ---- low-level helpers ----

    @staticmethod
    def _connect(db_path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(str(db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _get_conn(self) -> sqlite3.Connection:
        db_path = self.path
        if db_path is None:
            raise NotConfiguredError("no database selected; run init or load an existing file")
        if not db_path.exists():
            raise NotConfiguredError(f"selected database file is missing: {db_path}")
        try:
            return self._connect(db_path)
        except sqlite3.Error as e:
            raise StorageFailure(str(e)) from e

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        One logical transaction: commit on success, roll back on any error.

        sqlite3 errors leave as StorageFailure (chained).
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFailure(str(e)) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _run(self, conn: sqlite3.Connection | None, fn: Callable[[sqlite3.Connection], T]) -> T:
        if conn is not None:
            return fn(conn)
        with self.transaction() as own:
            return fn(own)

    # ---- gateway primitives ----

    def read_one(
        self,
        table: str,
        *,
        where: str,
        params: Sequence[Any] = (),
        columns: Sequence[str] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> sqlite3.Row | None:
        cols = ", ".join(_ident(c) for c in columns) if columns else "*"
        sql = f"SELECT {cols} FROM {_ident(table)} WHERE {where} LIMIT 1"
        return self._run(conn, lambda c: c.execute(sql, tuple(params)).fetchone())

    def read_many(
        self,
        table: str,
        *,
        where: str | None = None,
        params: Sequence[Any] = (),
        order_by: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[sqlite3.Row]:
        sql = f"SELECT * FROM {_ident(table)}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return self._run(conn, lambda c: c.execute(sql, tuple(params)).fetchall())

    def count(
        self,
        table: str,
        *,
        where: str | None = None,
        params: Sequence[Any] = (),
        conn: sqlite3.Connection | None = None,
    ) -> int:
        sql = f"SELECT COUNT(*) FROM {_ident(table)}"
        if where:
            sql += f" WHERE {where}"
        row = self._run(conn, lambda c: c.execute(sql, tuple(params)).fetchone())
        return int(row[0]) if row else 0

    def insert(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        or_ignore: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Insert one row. Returns the number of rows written (0 when ignored)."""
        if not values:
            raise ValidationError("insert needs at least one column")
        cols = [_ident(k) for k in values]
        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        sql = (
            f"{verb} INTO {_ident(table)} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)})"
        )
        params = tuple(values.values())
        return self._run(conn, lambda c: c.execute(sql, params).rowcount)

    def patch(
        self,
        table: str,
        assignments: Sequence[str],
        params: Sequence[Any],
        *,
        where: str,
        where_params: Sequence[Any] = (),
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """UPDATE with a prepared `col = ?` list. Returns the affected row count."""
        if not assignments:
            return 0
        sql = f"UPDATE {_ident(table)} SET {', '.join(assignments)} WHERE {where}"
        all_params = (*params, *where_params)
        return self._run(conn, lambda c: c.execute(sql, all_params).rowcount)

    def delete(
        self,
        table: str,
        *,
        where: str,
        params: Sequence[Any] = (),
        conn: sqlite3.Connection | None = None,
    ) -> int:
        sql = f"DELETE FROM {_ident(table)} WHERE {where}"
        return self._run(conn, lambda c: c.execute(sql, tuple(params)).rowcount)

    # ---- table browser ----

    def list_tables(self) -> list[str]:
        return self._run(None, schema.list_tables)

    def query_table(self, table_name: str, *, limit: int = 100, offset: int = 0) -> TableRows:
        """
        Dump rows of one of our own tables.

        The name is checked structurally and against the live table list
        before it is placed in SQL; it is never escaped or quoted.
        """
        if not isinstance(table_name, str) or not _BROWSABLE_TABLE_RE.match(table_name):
            raise ValidationError(f"invalid table name: {table_name!r}")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValidationError(f"invalid limit: {limit!r}")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError(f"invalid offset: {offset!r}")

        with self.transaction() as conn:
            if table_name not in schema.list_tables(conn):
                raise ValidationError(f"unknown table: {table_name!r}")
            cur = conn.execute(f"SELECT * FROM {table_name} LIMIT ? OFFSET ?", (limit, offset))
            columns = [d[0] for d in cur.description or ()]
            rows = [_browser_row(r) for r in cur.fetchall()]
        return TableRows(columns=columns, rows=rows)


def _browser_row(row: sqlite3.Row) -> list[Any]:
    out: list[Any] = []
    for v in tuple(row):
        if isinstance(v, bytes):
            out.append(f"[blob {len(v)} bytes]")
        else:
            out.append(v)
    return out
