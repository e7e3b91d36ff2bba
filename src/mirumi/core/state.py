# src/mirumi/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..db.gateway import Database
from ..tasks.session_recorder import SessionRecorder
from ..tasks.task_store import TaskStore
from ..timer.coordinator import TimerCoordinator


@dataclass(slots=True)
class ActiveRun:
    """The task the countdown is currently attached to (foreground bookkeeping)."""

    task_id: str
    run_id: str
    label: str
    started_remaining: int  # countdown value when this run began
    base_time_spent: int  # task.total_time_spent when this run began
    timer_generation: int = 0  # countdown this run is attached to


@dataclass
class AppState:
    settings: Any

    db: Database
    task_store: TaskStore
    sessions: SessionRecorder
    timer: TimerCoordinator

    active: ActiveRun | None = None
    # Guards `active`; commands and the timer-ended listener both touch it.
    lock: threading.RLock = field(default_factory=threading.RLock)
