# tests/test_gateway.py

from __future__ import annotations

from pathlib import Path

import pytest

from mirumi.db.gateway import Database
from mirumi.errors import NotConfiguredError, NotFoundError, ValidationError
from mirumi.tasks.task_models import CreateTaskInput
from mirumi.tasks.task_store import TaskStore


def test_operations_fail_until_a_database_is_selected(tmp_path: Path) -> None:
    db = Database(default_path=tmp_path / "default.db")
    store = TaskStore(db)

    assert db.is_configured is False
    assert db.status().configured is False
    with pytest.raises(NotConfiguredError):
        store.list_tasks()
    with pytest.raises(NotConfiguredError):
        db.list_tables()


def test_init_without_path_uses_default(tmp_path: Path) -> None:
    default = tmp_path / "nested" / "default.db"
    db = Database(default_path=default)

    st = db.init()

    assert st.configured is True
    assert Path(st.path) == default
    assert default.exists()
    assert "tbl_task" in st.tables


def test_load_existing_and_logout(tmp_path: Path) -> None:
    path = tmp_path / "a.db"
    first = Database(default_path=tmp_path / "default.db")
    first.init(path)
    task_id = TaskStore(first).create_task(CreateTaskInput(title="persisted"))

    second = Database(default_path=tmp_path / "default.db")
    second.load_existing(path)
    assert TaskStore(second).get_task(task_id).title == "persisted"

    second.logout()
    with pytest.raises(NotConfiguredError):
        TaskStore(second).get_task(task_id)


def test_load_existing_missing_file(tmp_path: Path) -> None:
    db = Database(default_path=tmp_path / "default.db")
    with pytest.raises(NotFoundError):
        db.load_existing(tmp_path / "nope.db")
    assert db.is_configured is False


def test_deleted_file_reports_not_configured(tmp_path: Path) -> None:
    path = tmp_path / "gone.db"
    db = Database(default_path=tmp_path / "default.db")
    db.init(path)
    for p in tmp_path.glob("gone.db*"):
        p.unlink()
    with pytest.raises(NotConfiguredError):
        db.list_tables()


def test_query_table_returns_rows(db: Database) -> None:
    TaskStore(db).create_task(CreateTaskInput(title="row"))

    dump = db.query_table("tbl_task", limit=10)

    assert "title" in dump.columns
    assert len(dump.rows) == 1
    assert dump.rows[0][dump.columns.index("title")] == "row"


def test_query_table_paging(db: Database) -> None:
    store = TaskStore(db)
    for i in range(3):
        store.create_task(CreateTaskInput(title=f"t{i}"))
    assert len(db.query_table("tbl_task", limit=2).rows) == 2
    assert len(db.query_table("tbl_task", limit=2, offset=2).rows) == 1
    assert db.query_table("tbl_task", limit=0).rows == []


@pytest.mark.parametrize(
    "name",
    [
        "tbl_task; DROP TABLE tbl_task",
        "tbl_task--",
        "sqlite_master",
        "task",
        "tbl_",
        "tbl_does_not_exist",
        "",
    ],
)
def test_query_table_rejects_bad_names(db: Database, name: str) -> None:
    with pytest.raises(ValidationError):
        db.query_table(name)
    assert "tbl_task" in db.list_tables()


@pytest.mark.parametrize(("limit", "offset"), [(-1, 0), (10, -5), (True, 0), ("10", 0)])
def test_query_table_rejects_bad_paging(db: Database, limit, offset) -> None:
    with pytest.raises(ValidationError):
        db.query_table("tbl_task", limit=limit, offset=offset)
