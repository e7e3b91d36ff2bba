# src/mirumi/tasks/session_recorder.py

from __future__ import annotations

import logging
import time
import uuid

from ..db.gateway import Database
from ..errors import NotFoundError, ValidationError
from .task_models import EndType, ExtendTimeInput
from .task_store import EXTENSION_TABLE, RUN_TABLE, TASK_TABLE

logger = logging.getLogger(__name__)


class SessionRecorder:
    """
    Run-history and time-extension writes.

    Pairing start/end and passing sensible durations is the caller's job;
    nothing here compares the claimed duration with wall-clock time, and
    nothing stops two sessions of one task being open at once.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def start_session(self, task_id: str) -> str:
        """Open a run row for `task_id` and stamp the task's last_run_at."""
        run_id = str(uuid.uuid4())
        now = time.time()
        with self._db.transaction() as conn:
            touched = self._db.patch(
                TASK_TABLE,
                ["last_run_at = ?", "updated_at = ?"],
                [now, now],
                where="id = ?",
                where_params=(task_id,),
                conn=conn,
            )
            if touched == 0:
                raise NotFoundError(f"task not found: {task_id}")
            self._db.insert(
                RUN_TABLE,
                {
                    "id": run_id,
                    "task_id": task_id,
                    "started_at": now,
                    "ended_at": None,
                    "duration": 0,
                    "end_type": EndType.RUNNING.value,
                },
                conn=conn,
            )
        logger.info("Session started run_id=%s task_id=%s", run_id, task_id)
        return run_id

    def end_session(self, run_id: str, end_type: EndType | str, duration_seconds: int) -> None:
        try:
            kind = EndType(end_type)
        except ValueError as e:
            raise ValidationError(f"invalid end type: {end_type!r}") from e
        if kind is EndType.RUNNING:
            raise ValidationError("a session cannot end as 'running'")
        if isinstance(duration_seconds, bool) or int(duration_seconds) < 0:
            raise ValidationError(f"duration must be >= 0, got {duration_seconds!r}")

        n = self._db.patch(
            RUN_TABLE,
            ["ended_at = ?", "duration = ?", "end_type = ?"],
            [time.time(), int(duration_seconds), kind.value],
            where="id = ?",
            where_params=(run_id,),
        )
        if n == 0:
            raise NotFoundError(f"run not found: {run_id}")
        logger.info("Session ended run_id=%s end_type=%s duration=%s", run_id, kind.value, duration_seconds)

    def extend_time(self, data: ExtendTimeInput) -> str:
        """Record a time extension and set the task's expected_duration to the new value."""
        if data.added_minutes <= 0:
            raise ValidationError("added_minutes must be positive")
        if data.new_duration < 0 or data.previous_duration < 0:
            raise ValidationError("durations must be >= 0")

        ext_id = str(uuid.uuid4())
        now = time.time()
        with self._db.transaction() as conn:
            touched = self._db.patch(
                TASK_TABLE,
                ["expected_duration = ?", "updated_at = ?"],
                [int(data.new_duration), now],
                where="id = ?",
                where_params=(data.task_id,),
                conn=conn,
            )
            if touched == 0:
                raise NotFoundError(f"task not found: {data.task_id}")
            self._db.insert(
                EXTENSION_TABLE,
                {
                    "id": ext_id,
                    "task_id": data.task_id,
                    "added_minutes": int(data.added_minutes),
                    "previous_duration": int(data.previous_duration),
                    "new_duration": int(data.new_duration),
                    "reason": data.reason,
                    "created_at": now,
                },
                conn=conn,
            )
        logger.info(
            "Time extended task_id=%s +%s min (%s -> %s)",
            data.task_id,
            data.added_minutes,
            data.previous_duration,
            data.new_duration,
        )
        return ext_id
