# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from mirumi.core.state import AppState
from mirumi.db.gateway import Database
from mirumi.tasks.session_recorder import SessionRecorder
from mirumi.tasks.task_api import handle_timer_ended
from mirumi.tasks.task_store import TaskStore
from mirumi.timer.coordinator import TimerCoordinator

from .fakes import RecordingTitleSink


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the developer's .env.
    """
    return SimpleNamespace(
        app_name="Mirumi",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        default_db_path=tmp_path / "data" / "storage" / "mirumi.db",
        db_path=None,
        tick_interval_seconds=0.01,
        title_max_chars=12,
        console_title=False,
    )


@pytest.fixture()
def db(tmp_path: Path) -> Database:
    database = Database(default_path=tmp_path / "default.db")
    database.init(tmp_path / "tasks.db")
    return database


@pytest.fixture()
def store(db: Database) -> TaskStore:
    return TaskStore(db)


@pytest.fixture()
def sessions(db: Database) -> SessionRecorder:
    return SessionRecorder(db)


@pytest.fixture()
def sink() -> RecordingTitleSink:
    return RecordingTitleSink()


@pytest.fixture()
def state(settings: SimpleNamespace, db: Database, sink: RecordingTitleSink) -> AppState:
    """
    AppState wired like the bootstrap does it, with a recording title sink.

    NOTE: We keep a real SQLite file here because the lifecycle engine's
    correctness is part of what we want to test.
    """
    timer = TimerCoordinator(sink, idle_title=settings.app_name, label_max_chars=settings.title_max_chars)
    app_state = AppState(
        settings=settings,
        db=db,
        task_store=TaskStore(db),
        sessions=SessionRecorder(db),
        timer=timer,
    )
    timer.add_listener(lambda: handle_timer_ended(app_state))
    return app_state
