# tests/test_collection.py

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from chronos_tasks.core.notifications import NotificationBus, NotificationKind
from chronos_tasks.core.timeutil import sunday_weekday
from chronos_tasks.storage.local_store import LocalStore
from chronos_tasks.tasks.collection import TaskCollection
from chronos_tasks.tasks.display import GroupBy
from chronos_tasks.tasks.recurrence import RecurrenceRule
from chronos_tasks.tasks.task_lists import DEFAULT_LIST_ID
from chronos_tasks.tasks.task_models import Priority, TaskCreateInput
from fakes import BrokenLocalStore, FakeClock, NotificationRecorder


def _durable(entity) -> dict:
    row = entity.to_remote()
    row.pop("updated_at")
    return row


# ---- create ----


def test_add_creates_dirty_new_task_at_the_end(collection: TaskCollection) -> None:
    task = collection.add("Write report")

    assert task.title == "Write report"
    assert task.position == 1
    assert task.priority == Priority.NONE
    assert task.due_at is None
    assert task.new and task.dirty
    assert collection.active() == [task]

    second = collection.add(TaskCreateInput(title="Second", priority=Priority.HIGH, tags=["Work"]))
    assert second.position == 2
    assert second.tags == ["work"]
    assert "work" in collection.available_tags


def test_add_rejects_blank_and_truncates_long_titles(collection: TaskCollection) -> None:
    with pytest.raises(ValueError):
        collection.add("   ")
    task = collection.add("x" * 500)
    assert len(task.title) == 200


def test_add_respects_explicit_position(collection: TaskCollection) -> None:
    task = collection.add(TaskCreateInput(title="Pinned", position=-1))
    collection.add("Other")
    assert collection.active()[0] is task


def test_mutations_notify_subscribers(collection: TaskCollection) -> None:
    calls = []
    unsubscribe = collection.subscribe(lambda: calls.append(1))
    task = collection.add("a")
    collection.update_task(task.id, {"notes": "n"})
    unsubscribe()
    collection.update_task(task.id, {"notes": "m"})
    assert len(calls) == 2


# ---- delete / undo ----


def test_remove_then_undo_restores_local_task(collection: TaskCollection, recorder: NotificationRecorder) -> None:
    task = collection.add(TaskCreateInput(title="Keep me", tags=["x"], priority=Priority.LOW))
    before = _durable(task)

    action = collection.remove(task.id)

    assert action is not None
    assert collection.get_by_id(task.id) is None
    # never synced and no owner: gone from the backing list entirely
    assert collection.find_entity(task.id) is None
    deleted = recorder.last(NotificationKind.TASK_DELETED)
    assert deleted is not None and deleted.undo_id == action.id

    assert collection.undo(action.id)
    restored = collection.get_by_id(task.id)
    assert restored is not None
    assert _durable(restored) == before
    assert restored.dirty and restored.new
    assert recorder.last(NotificationKind.UNDO_APPLIED).message == "Task restored"


def test_remove_with_owner_leaves_tombstone_and_undo_replaces_it(collection: TaskCollection) -> None:
    collection.stamp_owner("u1")
    task = collection.add("Synced one")
    task.mark_synced()

    collection.remove(task.id)
    tomb = collection.find_entity(task.id)
    assert tomb is not None and tomb.deleted and tomb.dirty
    assert collection.all() == []

    collection.undo()
    assert len(collection.entities()) == 1
    restored = collection.get_by_id(task.id)
    assert restored is not None
    assert not restored.deleted
    assert not restored.new
    assert restored.user_id == "u1"


def test_clear_completed_and_undo(collection: TaskCollection, recorder: NotificationRecorder) -> None:
    done = [collection.add(f"done {i}") for i in range(3)]
    active = collection.add("still open")
    for t in done:
        collection.toggle_complete(t.id)

    action = collection.clear_completed()

    assert action is not None
    assert collection.all() == [active]
    assert recorder.last(NotificationKind.TASKS_CLEARED).undo_id == action.id

    assert collection.undo(action.id)
    ids = [e.id for e in collection.all()]
    assert len(ids) == 4 and len(set(ids)) == 4
    assert len(collection.completed()) == 3
    assert all(collection.get_by_id(t.id).dirty for t in done)
    assert collection.clear_completed(now=None) is not None
    assert collection.clear_completed() is None


def test_undo_with_empty_stack(collection: TaskCollection) -> None:
    assert collection.undo() is False
    assert not collection.can_undo


def test_undo_entries_expire(collection: TaskCollection, ticker) -> None:
    task = collection.add("a")
    collection.remove(task.id)
    ticker.advance(31)
    assert collection.expire_undo() == 1
    assert collection.undo() is False


# ---- completion / recurrence ----


def test_completing_weekly_task_schedules_next_listed_day(
    collection: TaskCollection, clock: FakeClock, recorder: NotificationRecorder
) -> None:
    task = collection.add(
        TaskCreateInput(
            title="Standup notes",
            due_at=datetime(2025, 1, 15, 18, 30, tzinfo=timezone.utc),
            recurrence=RecurrenceRule("weekly", days=(1, 3, 5)),
        )
    )

    follow = collection.toggle_complete(task.id)

    assert task.is_completed
    assert follow is not None
    assert follow.id != task.id
    assert follow.due_at is not None
    assert follow.due_at.date().isoformat() == "2025-01-17"
    assert sunday_weekday(follow.due_at) == 5
    assert follow.new and follow.dirty and not follow.is_completed
    assert follow.position > task.position
    assert NotificationKind.RECURRENCE_CREATED in recorder.kinds


def test_undo_completion_removes_follow_up(collection: TaskCollection) -> None:
    task = collection.add(TaskCreateInput(title="Daily", recurrence=RecurrenceRule("daily")))
    follow = collection.toggle_complete(task.id)
    assert follow is not None

    assert collection.undo()
    assert not task.is_completed
    assert task.completed_at is None
    assert collection.get_by_id(follow.id) is None


def test_toggle_complete_twice_reopens(collection: TaskCollection) -> None:
    task = collection.add("a")
    assert collection.toggle_complete(task.id) is None
    assert task.is_completed
    collection.toggle_complete(task.id)
    assert not task.is_completed
    assert collection.active() == [task]


# ---- ordering ----


def test_reorder_renumbers_active_view_only(collection: TaskCollection) -> None:
    a, b, c, d = (collection.add(t) for t in "abcd")
    done = collection.add("e")
    collection.toggle_complete(done.id)
    done.mark_synced()
    done_position = done.position

    assert collection.reorder(0, 2)

    assert [t.title for t in collection.active()] == ["b", "c", "a", "d"]
    assert [t.position for t in collection.active()] == [0, 1, 2, 3]
    assert all(t.dirty for t in (a, b, c, d))
    assert done.position == done_position
    assert not done.dirty


def test_reorder_rejects_bad_indexes(collection: TaskCollection) -> None:
    collection.add("a")
    collection.add("b")
    assert not collection.reorder(0, 5)
    assert not collection.reorder(-1, 0)
    assert not collection.reorder(1, 1)


def test_move_drops_in_front_of_target(collection: TaskCollection) -> None:
    a, b, c = (collection.add(t) for t in "abc")
    assert collection.move(a.id, c.id)
    assert [t.title for t in collection.active()] == ["b", "a", "c"]
    assert not collection.move(a.id, a.id)


# ---- timers ----


def test_starting_second_timer_pauses_first(collection: TaskCollection, clock: FakeClock) -> None:
    t1 = collection.add("one")
    t2 = collection.add("two")

    assert collection.start_timer(t1.id)
    clock.advance(seconds=60)
    assert collection.start_timer(t2.id)

    assert not t1.is_running
    assert t1.accumulated_time == 60_000
    assert collection.running_task is t2


def test_timer_undo_restores_previous_runner(collection: TaskCollection, clock: FakeClock) -> None:
    t1 = collection.add("one")
    t2 = collection.add("two")
    collection.start_timer(t1.id)
    clock.advance(seconds=30)
    collection.start_timer(t2.id)

    assert collection.undo()

    assert collection.running_task is t1
    assert t1.accumulated_time == 0
    assert not t2.is_running


def test_update_with_start_stamp_pauses_other_runner(collection: TaskCollection, clock: FakeClock) -> None:
    t1 = collection.add("one")
    t2 = collection.add("two")
    collection.start_timer(t1.id)
    clock.advance(seconds=5)

    collection.update_task(t2.id, {"last_start_time": clock()})

    assert not t1.is_running
    assert t1.accumulated_time == 5_000
    assert collection.running_task is t2


def test_toggle_pause_all_and_reset(collection: TaskCollection, clock: FakeClock) -> None:
    t1 = collection.add("one")
    assert collection.toggle_timer(t1.id) is True
    clock.advance(seconds=2)
    assert collection.toggle_timer(t1.id) is False
    assert t1.accumulated_time == 2_000

    collection.start_timer(t1.id)
    assert collection.pause_all_timers() == 1
    assert collection.pause_all_timers() == 0
    assert collection.reset_timer(t1.id)
    assert t1.accumulated_time == 0


# ---- tags ----


def test_delete_tag_everywhere_and_undo(collection: TaskCollection, recorder: NotificationRecorder) -> None:
    a = collection.add(TaskCreateInput(title="a", tags=["work", "home"]))
    b = collection.add(TaskCreateInput(title="b", tags=["work"]))
    collection.toggle_tag_filter("work")

    action = collection.delete_tag("Work")

    assert action is not None
    assert a.tags == ["home"] and b.tags == []
    assert "work" not in collection.available_tags
    assert collection.filters.tags == []
    assert recorder.last(NotificationKind.TAG_DELETED).undo_id == action.id

    assert collection.undo(action.id)
    assert "work" in a.tags and b.tags == ["work"]
    assert "work" in collection.available_tags
    assert collection.filters.tags == ["work"]


def test_tag_filter_toggles(collection: TaskCollection) -> None:
    tagged = collection.add(TaskCreateInput(title="a", tags=["x"]))
    collection.add("b")

    collection.toggle_tag_filter("x")
    assert collection.active() == [tagged]
    collection.toggle_tag_filter("x")
    assert len(collection.active()) == 2


def test_add_and_remove_tag_on_task(collection: TaskCollection) -> None:
    task = collection.add("a")
    assert collection.add_tag_to_task(task.id, "Focus")
    assert "focus" in collection.available_tags
    assert collection.remove_tag_from_task(task.id, "focus")
    assert not collection.remove_tag_from_task(task.id, "focus")
    assert collection.add_tag("errands")
    assert not collection.add_tag("errands")


# ---- subtasks ----


def test_subtask_operations(collection: TaskCollection) -> None:
    task = collection.add("a")
    st = collection.add_subtask(task.id, "step one")
    assert st is not None
    assert collection.toggle_subtask(task.id, st.id)
    assert collection.rename_subtask(task.id, st.id, "step 1")
    assert task.subtasks[0].title == "step 1" and task.subtasks[0].is_completed
    assert collection.remove_subtask(task.id, st.id)
    assert task.subtasks == []
    assert collection.add_subtask("missing", "x") is None


# ---- views ----


def test_grouped_by_date(collection: TaskCollection) -> None:
    collection.add(TaskCreateInput(title="late", due_at=datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)))
    collection.add(TaskCreateInput(title="soon", due_at=datetime(2025, 1, 16, 9, 0, tzinfo=timezone.utc)))
    collection.add("whenever")
    collection.set_display_config(group_by="date")

    assert collection.display_config.group_by == GroupBy.DATE
    assert [g.id for g in collection.grouped_tasks()] == ["overdue", "tomorrow", "noDate"]
    assert [t.title for t in collection.overdue()] == ["late"]


def test_completed_view_is_newest_first(collection: TaskCollection, clock: FakeClock) -> None:
    a = collection.add("a")
    b = collection.add("b")
    collection.toggle_complete(a.id)
    clock.advance(minutes=5)
    collection.toggle_complete(b.id)
    assert collection.completed() == [b, a]


def test_stats_from_collection(collection: TaskCollection) -> None:
    collection.add(TaskCreateInput(title="a", estimated_time=60_000))
    done = collection.add("b")
    collection.toggle_complete(done.id)
    stats = collection.stats()
    assert stats.total_tasks == 2
    assert stats.completion_rate == 50.0
    assert stats.estimated_time_ms == 60_000


# ---- lists ----


def test_removing_list_moves_tasks_to_default(collection: TaskCollection) -> None:
    errands = collection.add_list("Errands")
    assert errands is not None
    task = collection.add(TaskCreateInput(title="milk", list_id=errands.id))
    collection.set_filters(list_id=errands.id)
    assert collection.active() == [task]

    assert collection.remove_list(errands.id)

    assert task.list_id is None
    assert collection.filters.list_id is None
    assert [tl.id for tl in collection.lists] == [DEFAULT_LIST_ID]
    assert not collection.remove_list(DEFAULT_LIST_ID)
    assert not collection.rename_list(DEFAULT_LIST_ID, "Inbox")


# ---- persistence ----


def test_flush_then_reload_restores_everything(collection: TaskCollection, store: LocalStore) -> None:
    task = collection.add(TaskCreateInput(title="persist me", tags=["t"]))
    collection.start_timer(task.id)
    collection.set_display_config(group_by="priority")
    collection.update_preference("theme", "dark")
    assert collection.flush()

    reloaded = TaskCollection(store)
    copy = reloaded.get_by_id(task.id)
    assert copy is not None
    assert copy.to_persisted() == task.to_persisted()
    assert reloaded.available_tags == ["t"]
    assert reloaded.display_config.group_by == GroupBy.PRIORITY
    assert reloaded.preferences == {"theme": "dark"}
    assert reloaded.running_task is not None


def test_reload_keeps_a_single_runner(store: LocalStore, clock: FakeClock) -> None:
    start = clock().isoformat()
    store.save_tasks(
        [
            {"id": "a", "title": "a", "last_start_time": start},
            {"id": "b", "title": "b", "last_start_time": start},
            {"id": "a", "title": "dup"},
        ]
    )
    col = TaskCollection(store, clock=clock)
    assert len(col.all()) == 2
    assert sum(1 for e in col.all() if e.is_running) == 1
    assert col.get_by_id("a").title == "a"


def test_save_failure_is_reported_and_sticky(tmp_path: Path, clock: FakeClock) -> None:
    bus = NotificationBus()
    rec = NotificationRecorder()
    bus.subscribe(rec)
    store = BrokenLocalStore(tmp_path / "broken.sqlite3")
    col = TaskCollection(store, bus=bus, clock=clock)

    col.add("a")
    assert col.flush() is False
    assert col.persistence_error is not None
    assert NotificationKind.PERSISTENCE_FAILED in rec.kinds
    # memory state is unaffected
    assert len(col.all()) == 1

    store.broken = False
    assert col.flush() is True
    assert col.persistence_error is None


def test_save_is_pending_without_event_loop(collection: TaskCollection, store: LocalStore) -> None:
    collection.add("a")
    assert collection.save_pending
    assert store.load_tasks() == []
    collection.close()
    assert len(store.load_tasks()) == 1


@pytest.mark.asyncio
async def test_burst_of_edits_is_saved_once(collection: TaskCollection, store: LocalStore, monkeypatch) -> None:
    writes = []
    original = store.save_tasks

    def counting_save(records):
        writes.append(len(records))
        original(records)

    monkeypatch.setattr(store, "save_tasks", counting_save)

    task = collection.add("a")
    for i in range(5):
        collection.update_task(task.id, {"notes": f"n{i}"})
    await asyncio.sleep(0.1)

    assert writes == [1]
    assert not collection.save_pending
    assert store.load_tasks()[0]["notes"] == "n4"


def test_no_sync_requested_without_owner(collection: TaskCollection) -> None:
    collection.bind_sync(lambda: None)
    collection.add("a")
    assert not collection.sync_pending
    collection.stamp_owner("u1")
    collection.add("b")
    assert collection.sync_pending
    assert all(e.user_id == "u1" for e in collection.all())
    assert collection.sync_state == "detached"


def test_timestamps_come_from_injected_clock(collection: TaskCollection, clock: FakeClock) -> None:
    task = collection.add("a")
    assert task.created_at == clock()
    clock.advance(hours=1)
    collection.update_task(task.id, {"notes": "x"})
    assert task.updated_at == clock()
    assert task.updated_at - task.created_at == timedelta(hours=1)
