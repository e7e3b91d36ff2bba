# tests/test_task_api.py

from __future__ import annotations

import threading
import time

import pytest

from mirumi.core.state import AppState
from mirumi.errors import ValidationError
from mirumi.tasks import task_api
from mirumi.tasks.task_models import ActionKind, CreateTaskInput, EndType, TaskPatch, TaskStatus

from .fakes import RecordingTitleSink


def _new(state: AppState, title: str = "Focus", minutes: int = 5) -> str:
    return state.task_store.create_task(CreateTaskInput(title=title, expected_duration=minutes))


def _tick(state: AppState, n: int) -> None:
    for _ in range(n):
        state.timer.tick()


def test_start_focus_opens_run_and_starts_timer(state: AppState, sink: RecordingTitleSink) -> None:
    task_id = _new(state)

    task = task_api.start_focus(state, task_id)

    assert task.status == TaskStatus.IN_PROGRESS
    assert task.run_history[0].is_open
    assert state.timer.query() == (300, True)
    assert sink.last == "Focus 05:00"
    assert state.active is not None and state.active.task_id == task_id


def test_pause_then_resume_continues_from_snapshot(state: AppState, sink: RecordingTitleSink) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)
    _tick(state, 10)

    paused = task_api.pause_focus(state)

    assert paused is not None
    assert paused.status == TaskStatus.PAUSED
    assert paused.remaining_time_seconds == 290
    assert paused.total_time_spent == 10
    run = paused.run_history[0]
    assert (run.end_type, run.duration) == (EndType.PAUSED, 10)
    assert sink.last == "Focus 04:50"
    assert state.active is None

    resumed = task_api.start_focus(state, task_id)
    assert state.timer.query() == (290, True)
    assert resumed.remaining_time_seconds is None
    assert len(resumed.run_history) == 2


def test_pause_without_active_task(state: AppState) -> None:
    assert task_api.pause_focus(state) is None


def test_switching_tasks_pauses_the_previous_one(state: AppState) -> None:
    a = _new(state, "A")
    b = _new(state, "B", minutes=10)
    task_api.start_focus(state, a)
    _tick(state, 5)

    task_api.start_focus(state, b)

    first = state.task_store.get_task(a)
    assert first.status == TaskStatus.PAUSED
    assert first.remaining_time_seconds == 295
    assert first.total_time_spent == 5
    assert state.timer.snapshot().label == "B"
    assert state.timer.query() == (600, True)


def test_complete_active_task_resets_display(state: AppState, sink: RecordingTitleSink) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)
    _tick(state, 4)

    done = task_api.complete_task(state, task_id)

    assert done.status == TaskStatus.COMPLETED
    assert done.total_time_spent == 4
    assert done.completed_at is not None
    assert done.run_history[0].end_type == EndType.COMPLETED
    assert sink.last == "Mirumi"
    assert state.timer.query()[1] is False


def test_complete_inactive_task_leaves_timer_alone(state: AppState) -> None:
    running = _new(state, "running")
    other = _new(state, "other")
    task_api.start_focus(state, running)

    task_api.complete_task(state, other)

    assert state.timer.query()[1] is True
    assert state.task_store.get_task(other).status == TaskStatus.COMPLETED


def test_extend_running_task_moves_countdown(state: AppState) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)
    _tick(state, 10)

    task = task_api.extend_task(state, task_id, 2, "needs more")

    assert task.expected_duration == 7
    assert state.timer.query() == (410, True)
    assert task.time_extensions[0].reason == "needs more"

    paused = task_api.pause_focus(state)
    assert paused is not None
    assert paused.total_time_spent == 10


def test_extend_paused_task_grows_snapshot(state: AppState) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)
    _tick(state, 30)
    task_api.pause_focus(state)

    task = task_api.extend_task(state, task_id, 1)

    assert task.remaining_time_seconds == 270 + 60
    assert task.expected_duration == 6


def test_timer_end_parks_task_as_timed_out(state: AppState) -> None:
    task_id = _new(state, minutes=1)
    task_api.start_focus(state, task_id)

    _tick(state, 60)

    task = state.task_store.get_task(task_id)
    assert task.status == TaskStatus.PAUSED
    assert task.remaining_time_seconds == 0
    assert task.total_time_spent == 60
    assert task.run_history[0].end_type == EndType.TIMEOUT
    assert task.action_history[0].action_type == ActionKind.PAUSED
    assert state.active is None


def test_initial_remaining_seconds_defaults(state: AppState) -> None:
    task_id = state.task_store.create_task(CreateTaskInput(title="t", expected_duration=None))
    assert task_api.initial_remaining_seconds(state.task_store.get_task(task_id)) == 300


def test_late_timer_end_does_not_touch_the_next_task(state: AppState) -> None:
    a = _new(state, "A")
    b = _new(state, "B")
    task_api.start_focus(state, a)
    state.timer.sync(1)

    with state.lock:
        ticker = threading.Thread(target=state.timer.tick)
        ticker.start()
        deadline = time.monotonic() + 5.0
        while state.timer.expired_generation == 0 and time.monotonic() < deadline:
            time.sleep(0.005)
        # The listener is now blocked on state.lock while the user starts B.
        task_api.start_focus(state, b)
    ticker.join(timeout=5.0)

    second = state.task_store.get_task(b)
    assert second.status == TaskStatus.IN_PROGRESS
    assert second.run_history[0].is_open
    assert state.active is not None and state.active.task_id == b
    assert state.timer.query() == (300, True)

    first = state.task_store.get_task(a)
    assert first.status == TaskStatus.PAUSED
    assert first.remaining_time_seconds == 0
    assert first.run_history[0].end_type == EndType.TIMEOUT


def test_repeated_timer_end_call_is_ignored(state: AppState) -> None:
    a = _new(state, "A", minutes=1)
    b = _new(state, "B")
    task_api.start_focus(state, a)
    _tick(state, 60)
    task_api.start_focus(state, b)

    task_api.handle_timer_ended(state)

    assert state.task_store.get_task(b).status == TaskStatus.IN_PROGRESS
    assert state.active is not None and state.active.task_id == b


def test_restarting_a_timed_out_task_uses_full_duration(state: AppState) -> None:
    task_id = _new(state, minutes=1)
    task_api.start_focus(state, task_id)
    _tick(state, 60)

    task_api.start_focus(state, task_id)

    assert state.timer.query() == (60, True)


def test_archive_running_task_stops_timer_and_closes_run(state: AppState, sink: RecordingTitleSink) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)
    _tick(state, 7)

    archived = task_api.archive_task(state, task_id)

    assert archived.status == TaskStatus.ARCHIVED
    assert archived.total_time_spent == 7
    assert archived.run_history[0].end_type == EndType.INTERRUPTED
    assert state.active is None
    assert state.timer.query()[1] is False
    assert sink.last == "Mirumi"

    assert task_api.pause_focus(state) is None
    task = state.task_store.get_task(task_id)
    assert task.status == TaskStatus.ARCHIVED
    assert [a.action_type for a in task.action_history] == [
        ActionKind.ARCHIVED,
        ActionKind.STARTED,
        ActionKind.CREATED,
    ]


def test_restore_running_task_detaches_it(state: AppState) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)

    restored = task_api.restore_task(state, task_id)

    assert restored.status == TaskStatus.INBOX
    assert state.active is None
    assert state.timer.query()[1] is False


def test_status_edit_to_paused_keeps_snapshot(state: AppState, sink: RecordingTitleSink) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)
    _tick(state, 20)

    task = task_api.update_task(state, task_id, TaskPatch(status=TaskStatus.PAUSED))

    assert task.status == TaskStatus.PAUSED
    assert task.remaining_time_seconds == 280
    assert task.total_time_spent == 20
    assert task.run_history[0].end_type == EndType.PAUSED
    assert sink.last == "Focus 04:40"
    assert state.active is None


def test_invalid_status_edit_leaves_timer_running(state: AppState) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)

    with pytest.raises(ValidationError):
        task_api.update_task(state, task_id, TaskPatch(status="DONE"))

    assert state.timer.query()[1] is True
    assert state.active is not None


def test_edit_of_other_fields_keeps_task_on_timer(state: AppState) -> None:
    task_id = _new(state)
    task_api.start_focus(state, task_id)

    task_api.update_task(state, task_id, TaskPatch(title="Renamed", status=TaskStatus.IN_PROGRESS))

    assert state.timer.query()[1] is True
    assert state.active is not None and state.active.task_id == task_id
