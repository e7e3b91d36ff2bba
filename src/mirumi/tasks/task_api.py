# src/mirumi/tasks/task_api.py

from __future__ import annotations

"""
High-level task + timer flows used by the command layer.

These pair the lifecycle engine, the session recorder and the timer the way
a UI does: starting a task opens a run and starts (or retargets) the
countdown; pausing/completing stops the countdown, closes the run and writes
the time spent back to the task. Any status change of the task on the timer
goes through here so the countdown never outlives its run.
"""

import logging

from ..core.state import ActiveRun, AppState
from ..errors import ValidationError
from .task_models import UNSET, EndType, ExtendTimeInput, Task, TaskPatch, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_MINUTES = 5


def initial_remaining_seconds(task: Task) -> int:
    """Paused snapshot if there is time left in it, else the full expected duration."""
    if task.status == TaskStatus.PAUSED and task.remaining_time_seconds:
        return max(0, int(task.remaining_time_seconds))
    minutes = task.expected_duration if task.expected_duration is not None else DEFAULT_EXPECTED_MINUTES
    return max(0, int(minutes)) * 60


def _close_run(state: AppState, active: ActiveRun, end_type: EndType, remaining: int) -> int:
    """End `active`'s run and return the task's new total time spent."""
    elapsed = max(0, active.started_remaining - int(remaining))
    state.active = None
    state.sessions.end_session(active.run_id, end_type, elapsed)
    return active.base_time_spent + elapsed


def _settle_expired(state: AppState) -> None:
    """
    Time out the attached run if its countdown already reached zero.

    The timer-ended listener runs on the tick thread and may still be waiting
    for `state.lock`; whoever gets the lock first settles the expiry, and only
    for the countdown that actually expired.
    """
    active = state.active
    if active is None or active.timer_generation != state.timer.expired_generation:
        return
    spent = _close_run(state, active, EndType.TIMEOUT, 0)
    state.task_store.pause_task(active.task_id, 0, total_time_spent=spent)
    logger.info("Time is up for task_id=%s", active.task_id)


def _detach(
    state: AppState,
    task_id: str,
    end_type: EndType,
    *,
    reset_label: bool = True,
) -> tuple[int, int] | None:
    """
    If `task_id` is on the timer: stop the countdown and close its run.

    Returns (remaining_seconds, total_time_spent), or None when the task was
    not attached.
    """
    _settle_expired(state)
    active = state.active
    if active is None or active.task_id != task_id:
        return None
    remaining = state.timer.stop(reset_label=reset_label)
    return remaining, _close_run(state, active, end_type, remaining)


def start_focus(state: AppState, task_id: str) -> Task:
    """
    Start (or resume) `task_id` on the shared countdown.

    If another task is running it is paused first and the countdown is
    retargeted instead of restarted.
    """
    with state.lock:
        _settle_expired(state)
        task = state.task_store.get_task(task_id)
        switching = False

        active = state.active
        if active is not None:
            if active.task_id == task_id:
                return task
            remaining, running = state.timer.query()
            spent = _close_run(state, active, EndType.PAUSED, remaining)
            state.task_store.pause_task(active.task_id, remaining, total_time_spent=spent)
            switching = running

        remaining = initial_remaining_seconds(task)
        state.task_store.start_task(task.id)
        run_id = state.sessions.start_session(task.id)

        if switching:
            generation = state.timer.update(remaining, task.title)
        else:
            generation = state.timer.start(remaining, task.title)

        state.active = ActiveRun(
            task_id=task.id,
            run_id=run_id,
            label=task.title,
            started_remaining=remaining,
            base_time_spent=task.total_time_spent,
            timer_generation=generation,
        )

        logger.info("Focus on task_id=%s remaining=%ss", task.id, remaining)
        return state.task_store.get_task(task.id)


def pause_focus(state: AppState) -> Task | None:
    """Pause the running task; the display keeps its label and frozen time."""
    with state.lock:
        _settle_expired(state)
        active = state.active
        if active is None:
            return None
        remaining = state.timer.stop(reset_label=False)
        spent = _close_run(state, active, EndType.PAUSED, remaining)
        state.task_store.pause_task(active.task_id, remaining, total_time_spent=spent)
        return state.task_store.get_task(active.task_id)


def complete_task(state: AppState, task_id: str) -> Task:
    """Complete a task, closing its run first if it is the one on the timer."""
    with state.lock:
        detached = _detach(state, task_id, EndType.COMPLETED)
        state.task_store.complete_task(task_id, total_time_spent=detached[1] if detached else None)
        return state.task_store.get_task(task_id)


def archive_task(state: AppState, task_id: str) -> Task:
    with state.lock:
        detached = _detach(state, task_id, EndType.INTERRUPTED)
        state.task_store.archive_task(task_id, total_time_spent=detached[1] if detached else None)
        return state.task_store.get_task(task_id)


def restore_task(state: AppState, task_id: str) -> Task:
    with state.lock:
        detached = _detach(state, task_id, EndType.INTERRUPTED)
        state.task_store.restore_task(task_id, total_time_spent=detached[1] if detached else None)
        return state.task_store.get_task(task_id)


def update_task(state: AppState, task_id: str, patch: TaskPatch) -> Task:
    """
    Apply a user edit. Moving the task on the timer out of IN_PROGRESS stops
    the countdown and closes its run (as paused for PAUSED, else interrupted).
    """
    with state.lock:
        if patch.status is not UNSET:
            try:
                new_status = TaskStatus(patch.status)
            except ValueError as e:
                raise ValidationError(f"invalid status: {patch.status!r}") from e

            if new_status != TaskStatus.IN_PROGRESS:
                pausing = new_status == TaskStatus.PAUSED
                detached = _detach(
                    state,
                    task_id,
                    EndType.PAUSED if pausing else EndType.INTERRUPTED,
                    reset_label=not pausing,
                )
                if detached is not None:
                    remaining, spent = detached
                    if patch.total_time_spent is UNSET:
                        patch.total_time_spent = spent
                    if pausing and patch.remaining_time_seconds is UNSET:
                        patch.remaining_time_seconds = remaining

        state.task_store.apply_update(task_id, patch)
        return state.task_store.get_task(task_id)


def delete_task(state: AppState, task_id: str) -> None:
    with state.lock:
        _detach(state, task_id, EndType.INTERRUPTED)
        state.task_store.delete_task(task_id)


def extend_task(state: AppState, task_id: str, added_minutes: int, reason: str | None = None) -> Task:
    """Add minutes to a task's expected duration (and to the countdown if it is running it)."""
    with state.lock:
        _settle_expired(state)
        task = state.task_store.get_task(task_id)
        previous = task.expected_duration if task.expected_duration is not None else DEFAULT_EXPECTED_MINUTES
        state.sessions.extend_time(
            ExtendTimeInput(
                task_id=task_id,
                added_minutes=int(added_minutes),
                previous_duration=previous,
                new_duration=previous + int(added_minutes),
                reason=reason,
            )
        )

        active = state.active
        if active is not None and active.task_id == task_id:
            remaining, running = state.timer.query()
            extra = int(added_minutes) * 60
            active.started_remaining += extra
            if running:
                state.timer.sync(remaining + extra)
        elif task.status == TaskStatus.PAUSED and task.remaining_time_seconds is not None:
            state.task_store.apply_update(
                task_id,
                TaskPatch(remaining_time_seconds=task.remaining_time_seconds + int(added_minutes) * 60),
            )
        return state.task_store.get_task(task_id)


def handle_timer_ended(state: AppState) -> None:
    """
    Timer-ended listener: close the run as a timeout and park the task as
    paused with nothing left, so the user can extend or complete it.

    A late call for a countdown that has since been replaced does nothing.
    """
    with state.lock:
        if state.active is None or state.active.timer_generation != state.timer.expired_generation:
            logger.debug("Timer-ended for a countdown that is no longer attached; ignored")
            return
        _settle_expired(state)
