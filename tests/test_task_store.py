# tests/test_task_store.py

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from mirumi.errors import AuditWriteError, NotFoundError, StorageFailure, ValidationError
from mirumi.tasks import task_store as task_store_module
from mirumi.tasks.task_models import (
    ActionKind,
    CreateTaskInput,
    NotePatch,
    TaskPatch,
    TaskPriority,
    TaskStatus,
)
from mirumi.tasks.task_store import TASK_TABLE, TaskStore


def _raw(store: TaskStore, task_id: str) -> dict:
    row = store._db.read_one(TASK_TABLE, where="id = ?", params=(task_id,))
    assert row is not None
    return dict(row)


def _actions(store: TaskStore, task_id: str, kind: ActionKind) -> list:
    return [a for a in store.get_task(task_id).action_history if a.action_type == kind]


def test_create_task_records_created_entry_and_defaults(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="  Write report  ", tags=["work", "urgent"]))

    task = store.get_task(task_id)
    assert task.title == "Write report"
    assert task.status == TaskStatus.INBOX
    assert task.priority == TaskPriority.MEDIUM
    assert task.expected_duration == 5
    assert task.total_time_spent == 0
    assert task.tags == ["work", "urgent"]

    assert len(task.action_history) == 1
    created = task.action_history[0]
    assert created.action_type == ActionKind.CREATED
    assert created.previous_status is None
    assert created.new_status == "INBOX"


def test_create_task_rejects_empty_title(store: TaskStore) -> None:
    with pytest.raises(ValidationError):
        store.create_task(CreateTaskInput(title="   "))
    assert store.list_tasks() == []


def test_omitted_fields_are_left_untouched(store: TaskStore) -> None:
    task_id = store.create_task(
        CreateTaskInput(
            title="Read paper",
            description="section 3",
            url="https://example.org/paper",
            target_date="2030-01-01",
            is_important=True,
        )
    )
    before = _raw(store, task_id)

    store.apply_update(task_id, TaskPatch(title="Read paper again"))

    after = _raw(store, task_id)
    assert after["title"] == "Read paper again"
    assert after["updated_at"] >= before["updated_at"]
    for col in before:
        if col in ("title", "updated_at"):
            continue
        assert after[col] == before[col], col


def test_explicit_none_clears_nullable_field(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t", description="d"))
    store.apply_update(task_id, TaskPatch(description=None))
    assert store.get_task(task_id).description is None


def test_none_on_required_field_is_rejected_before_writing(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    before = _raw(store, task_id)
    with pytest.raises(ValidationError):
        store.apply_update(task_id, TaskPatch(title=None, description="x"))
    assert _raw(store, task_id) == before


@pytest.mark.parametrize(
    ("start", "target", "expected"),
    [
        (TaskStatus.INBOX, TaskStatus.IN_PROGRESS, ActionKind.STARTED),
        (TaskStatus.IN_PROGRESS, TaskStatus.PAUSED, ActionKind.PAUSED),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, ActionKind.COMPLETED),
        (TaskStatus.INBOX, TaskStatus.ARCHIVED, ActionKind.ARCHIVED),
        (TaskStatus.COMPLETED, TaskStatus.INBOX, ActionKind.RESTORED),
    ],
)
def test_status_change_records_mapped_action(
    store: TaskStore, start: TaskStatus, target: TaskStatus, expected: ActionKind
) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    if start != TaskStatus.INBOX:
        store.apply_update(task_id, TaskPatch(status=start))

    store.apply_update(task_id, TaskPatch(status=target))

    latest = store.get_task(task_id).action_history[0]
    assert latest.action_type == expected
    assert latest.previous_status == start.value
    assert latest.new_status == target.value


def test_unmapped_status_falls_back_to_status_changed() -> None:
    assert ActionKind.for_status("SOMETHING_NEW") == ActionKind.STATUS_CHANGED
    assert ActionKind.from_db("NOT_A_KIND") == ActionKind.STATUS_CHANGED


def test_same_status_records_nothing(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    store.apply_update(task_id, TaskPatch(status=TaskStatus.INBOX, title="t2"))
    assert [a.action_type for a in store.get_task(task_id).action_history] == [ActionKind.CREATED]


def test_target_date_change_metadata(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))

    store.apply_update(task_id, TaskPatch(target_date="2030-05-01"))
    first = _actions(store, task_id, ActionKind.TARGET_DATE_CHANGED)
    assert len(first) == 1
    assert first[0].metadata == {"newTargetDate": "2030-05-01"}

    store.apply_update(task_id, TaskPatch(target_date="2030-05-02"))
    second = _actions(store, task_id, ActionKind.TARGET_DATE_CHANGED)
    assert len(second) == 2
    assert second[0].metadata == {"previousTargetDate": "2030-05-01", "newTargetDate": "2030-05-02"}


def test_same_target_date_records_nothing(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t", target_date="2030-05-01"))
    store.apply_update(task_id, TaskPatch(target_date="2030-05-01"))
    assert _actions(store, task_id, ActionKind.TARGET_DATE_CHANGED) == []


def test_clearing_target_date_is_a_change(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t", target_date="2030-05-01"))
    store.apply_update(task_id, TaskPatch(target_date=None))

    entries = _actions(store, task_id, ActionKind.TARGET_DATE_CHANGED)
    assert len(entries) == 1
    assert entries[0].metadata == {"previousTargetDate": "2030-05-01", "newTargetDate": None}
    assert store.get_task(task_id).target_date is None


def test_status_and_target_date_in_one_patch_record_two_entries(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    store.apply_update(task_id, TaskPatch(status=TaskStatus.IN_PROGRESS, target_date="2030-01-01"))

    kinds = sorted(a.action_type.value for a in store.get_task(task_id).action_history)
    assert kinds == ["CREATED", "STARTED", "TARGET_DATE_CHANGED"]


def test_update_unknown_task_raises_not_found(store: TaskStore) -> None:
    with pytest.raises(NotFoundError):
        store.apply_update("00000000-0000-0000-0000-000000000000", TaskPatch(title="x"))


def test_invalid_status_is_rejected(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    with pytest.raises(ValidationError):
        store.apply_update(task_id, TaskPatch(status="DONE"))


def test_audit_failure_keeps_the_edit(store: TaskStore, monkeypatch: pytest.MonkeyPatch) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))

    def boom(*args, **kwargs):
        raise StorageFailure("disk full")

    monkeypatch.setattr(task_store_module, "record_action", boom)

    with pytest.raises(AuditWriteError) as excinfo:
        store.apply_update(task_id, TaskPatch(status=TaskStatus.ARCHIVED))

    assert excinfo.value.task_id == task_id
    monkeypatch.undo()
    task = store.get_task(task_id)
    assert task.status == TaskStatus.ARCHIVED
    assert [a.action_type for a in task.action_history] == [ActionKind.CREATED]


def test_delete_cascades_children_then_not_found(store: TaskStore, sessions) -> None:
    task_id = store.create_task(CreateTaskInput(title="t", tags=["a"]))
    store.add_memo(task_id, "memo")
    store.add_note(task_id, "note", "body")
    sessions.start_session(task_id)

    store.delete_task(task_id)

    with pytest.raises(NotFoundError):
        store.get_task(task_id)
    for table in (
        "tbl_task_tag",
        "tbl_task_memo",
        "tbl_task_note",
        "tbl_task_run_history",
        "tbl_task_action_history",
    ):
        assert store._db.count(table, where="task_id = ?", params=(task_id,)) == 0
    with pytest.raises(NotFoundError):
        store.delete_task(task_id)


def test_list_orders_important_first_then_newest(store: TaskStore) -> None:
    old_important = store.create_task(CreateTaskInput(title="old", is_important=True))
    mid = store.create_task(CreateTaskInput(title="mid"))
    new = store.create_task(CreateTaskInput(title="new"))

    assert [t.id for t in store.list_tasks()] == [old_important, new, mid]


def test_list_filters_by_status(store: TaskStore) -> None:
    a = store.create_task(CreateTaskInput(title="a"))
    store.create_task(CreateTaskInput(title="b"))
    store.archive_task(a)

    assert [t.id for t in store.list_tasks(TaskStatus.ARCHIVED)] == [a]
    with pytest.raises(ValidationError):
        store.list_tasks("NOPE")


def test_children_ordering(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    store.add_tag(task_id, "first")
    store.add_tag(task_id, "second")
    m1 = store.add_memo(task_id, "one")
    m2 = store.add_memo(task_id, "two")
    n1 = store.add_note(task_id, "n1", "")
    n2 = store.add_note(task_id, "n2", "")

    task = store.get_task(task_id)
    assert task.tags == ["first", "second"]
    assert [m.id for m in task.memos] == [m2.id, m1.id]
    assert [n.id for n in task.notes] == [n2.id, n1.id]


def test_duplicate_tag_is_ignored_and_remove_works(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    assert store.add_tag(task_id, "x") is True
    assert store.add_tag(task_id, "x") is False
    store.remove_tag(task_id, "x")
    assert store.get_task(task_id).tags == []


def test_children_need_an_existing_task(store: TaskStore) -> None:
    missing = "00000000-0000-0000-0000-000000000000"
    with pytest.raises(NotFoundError):
        store.add_memo(missing, "memo")
    with pytest.raises(NotFoundError):
        store.add_tag(missing, "tag")


def test_update_note_patches_only_given_fields(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    note = store.add_note(task_id, "title", "body")

    updated = store.update_note(note.id, NotePatch(content="new body"))
    assert updated.title == "title"
    assert updated.content == "new body"

    with pytest.raises(NotFoundError):
        store.update_note("missing", NotePatch(title="x"))


def test_lifecycle_helpers_set_correlated_fields(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))

    store.start_task(task_id)
    store.pause_task(task_id, 120, total_time_spent=180)
    paused = store.get_task(task_id)
    assert paused.status == TaskStatus.PAUSED
    assert paused.remaining_time_seconds == 120
    assert paused.total_time_spent == 180
    assert paused.last_paused_at is not None

    store.complete_task(task_id)
    done = store.get_task(task_id)
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at is not None
    assert done.remaining_time_seconds is None
    assert done.total_time_spent == 180

    store.restore_task(task_id)
    restored = store.get_task(task_id)
    assert restored.status == TaskStatus.INBOX
    assert restored.completed_at is None

    kinds = [a.action_type for a in restored.action_history]
    assert kinds == [
        ActionKind.RESTORED,
        ActionKind.COMPLETED,
        ActionKind.PAUSED,
        ActionKind.STARTED,
        ActionKind.CREATED,
    ]


def test_plain_status_patch_does_not_derive_completed_at(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    store.apply_update(task_id, TaskPatch(status=TaskStatus.COMPLETED))
    assert store.get_task(task_id).completed_at is None


def test_find_task_ids_by_prefix(store: TaskStore) -> None:
    task_id = store.create_task(CreateTaskInput(title="t"))
    assert store.find_task_ids(task_id[:8]) == [task_id]
    with pytest.raises(ValidationError):
        store.find_task_ids("%")


def test_sidebar_counts(store: TaskStore) -> None:
    now = datetime.now().astimezone().replace(microsecond=0)
    today = now.isoformat()
    tomorrow = (now + timedelta(days=1)).isoformat()

    store.create_task(CreateTaskInput(title="today", target_date=today, is_important=True))
    store.create_task(CreateTaskInput(title="tomorrow", target_date=tomorrow))
    store.create_task(CreateTaskInput(title="overdue", target_date="2000-01-01"))
    done = store.create_task(CreateTaskInput(title="done", target_date="2000-01-01", is_important=True))
    archived = store.create_task(CreateTaskInput(title="archived"))
    store.complete_task(done)
    store.archive_task(archived)

    counts = store.sidebar_counts()
    assert counts.inbox == 3
    assert counts.completed == 1
    assert counts.archive == 1
    assert counts.starred == 1
    assert counts.today == 1
    assert counts.tomorrow == 1
    assert counts.overdue == 1
