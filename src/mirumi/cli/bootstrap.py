# src/mirumi/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the datastore, lifecycle engine, session recorder and timer into AppState,
- opens the configured database (if any) and hooks timer expiry to the task flow.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import TitleSink
from ..core.state import AppState
from ..db.gateway import Database
from ..tasks.session_recorder import SessionRecorder
from ..tasks.task_api import handle_timer_ended
from ..tasks.task_store import TaskStore
from ..timer.coordinator import TimerCoordinator

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.default_db_path.parent.mkdir(parents=True, exist_ok=True)


def _open_configured_db(db: Database, settings) -> None:
    db_path = getattr(settings, "db_path", None)
    if not db_path:
        logger.info("No database configured; use /db init or /db open.")
        return
    if db_path.exists():
        db.load_existing(db_path)
    else:
        db.init(db_path)


def create_initial_state(*, settings=None, sink: TitleSink | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    db = Database(default_path=settings.default_db_path)
    _open_configured_db(db, settings)

    timer = TimerCoordinator(
        sink,
        idle_title=settings.app_name,
        label_max_chars=settings.title_max_chars,
    )

    state = AppState(
        settings=settings,
        db=db,
        task_store=TaskStore(db),
        sessions=SessionRecorder(db),
        timer=timer,
    )
    timer.add_listener(lambda: handle_timer_ended(state))
    return state
