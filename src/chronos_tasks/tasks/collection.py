# src/chronos_tasks/tasks/collection.py

from __future__ import annotations

"""
TaskCollection: the single owner of the in-memory task list.

Every mutation is synchronous and complete when the call returns. After each
one, `_commit()`:
- notifies observers (subscribe())
- schedules the debounced local save
- schedules the debounced remote sync (only while an owner is attached)

TimerCoordinator, UndoManager and SyncCoordinator never hold a copy of the
list; they go through the accessors below.

Deleted entities stay in the backing list as tombstones (deleted=True) until
the remote delete is confirmed. They are invisible to every read view.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from ..core.debounce import Debouncer
from ..core.errors import LocalStoreError
from ..core.notifications import NotificationBus, NotificationKind
from ..core.ports import KeyValueStore
from ..core.timeutil import Clock, format_dt, local_now
from ..storage.local_store import (
    KEY_DISPLAY_CONFIG,
    KEY_FILTERS,
    KEY_LISTS,
    KEY_PREFERENCES,
    KEY_TAGS,
)
from .display import (
    DisplayConfig,
    FilterState,
    TaskGroup,
    TaskStats,
    apply_filters,
    compute_stats,
    group_tasks,
)
from .task_lists import TaskList, TaskListRegistry
from .task_models import (
    TITLE_MAX_LENGTH,
    Subtask,
    TaskCreateInput,
    TaskEntity,
    new_id,
    normalize_tag,
    normalize_tags,
)
from .timer import TimerCoordinator, TickCallback, run_timer_loop
from .undo import UndoAction, UndoKind, UndoManager, run_undo_expiry_loop

logger = logging.getLogger(__name__)

Listener = Callable[[], None]
SyncRequest = Callable[[], Awaitable[Any] | None]


class TaskCollection:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        bus: NotificationBus | None = None,
        clock: Clock = local_now,
        save_debounce_seconds: float = 0.5,
        sync_debounce_seconds: float = 1.0,
        undo_max_size: int = 20,
        undo_ttl_seconds: float = 30.0,
        undo_clock: Callable[[], float] = time.monotonic,
        title_max_length: int = TITLE_MAX_LENGTH,
    ) -> None:
        self._store = store
        self.bus = bus or NotificationBus()
        self._clock = clock
        self._title_max = max(1, int(title_max_length))

        self._items: list[TaskEntity] = []
        self._tags: list[str] = []
        self._filters = FilterState()
        self._display = DisplayConfig()
        self._preferences: dict[str, Any] = {}
        self._lists = TaskListRegistry()
        self._persistence_error: str | None = None

        self._owner_id: str | None = None
        self._sync_request: SyncRequest | None = None
        self._sync_state: Callable[[], str] | None = None
        self._sync_teardown: Callable[[], None] | None = None

        self._listeners: list[Listener] = []
        self._bg_tasks: list[asyncio.Task[Any]] = []
        self._closed = False

        self.timer = TimerCoordinator(self.entities, clock=clock)
        self.undo_manager = UndoManager(
            self._dispatch_undo,
            max_size=undo_max_size,
            ttl_seconds=undo_ttl_seconds,
            clock=undo_clock,
        )
        self._save_debouncer = Debouncer(save_debounce_seconds, self._save_now, name="save")
        self._sync_debouncer = Debouncer(sync_debounce_seconds, self._run_sync_request, name="sync")

        self._load()

    # ---- loading ----

    def _load(self) -> None:
        if self._store is None:
            return
        try:
            records = self._store.load_tasks()
            raw_tags = self._store.load(KEY_TAGS, [])
            raw_filters = self._store.load(KEY_FILTERS)
            raw_display = self._store.load(KEY_DISPLAY_CONFIG)
            raw_lists = self._store.load(KEY_LISTS)
            raw_prefs = self._store.load(KEY_PREFERENCES, {})
        except LocalStoreError as e:
            logger.exception("Loading local snapshot failed")
            self._persistence_error = str(e)
            return

        seen: set[str] = set()
        for rec in records:
            try:
                entity = TaskEntity.from_persisted(rec)
            except ValueError:
                logger.warning("Skipping persisted task without id")
                continue
            if entity.id in seen:
                logger.warning("Skipping duplicate persisted task id=%s", entity.id)
                continue
            seen.add(entity.id)
            self._items.append(entity)

        # a corrupt snapshot may carry several start stamps; keep the first runner
        runner_seen = False
        for e in self._items:
            if e.is_running and not e.deleted:
                if runner_seen:
                    e.pause_timer(self._clock())
                runner_seen = True

        self._tags = normalize_tags(raw_tags) if isinstance(raw_tags, list) else []
        self._filters = FilterState.from_dict(raw_filters)
        self._display = DisplayConfig.from_dict(raw_display)
        self._lists = TaskListRegistry.from_raw(raw_lists)
        self._preferences = dict(raw_prefs) if isinstance(raw_prefs, dict) else {}
        self._sync_tags_from_tasks()

        logger.info("Loaded %d tasks (%d visible)", len(self._items), len(self.all()))

    # ---- observers ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Collection listener failed")

    def _commit(self, *, sync: bool = True) -> None:
        self._notify()
        self._save_debouncer.schedule()
        if sync and self._owner_id is not None and self._sync_request is not None:
            self._sync_debouncer.schedule()

    # ---- persistence ----

    def _save_now(self) -> bool:
        if self._store is None:
            return True
        try:
            self._store.save_tasks([e.to_persisted() for e in self._items])
            self._store.save(KEY_TAGS, list(self._tags))
            self._store.save(KEY_FILTERS, self._filters.to_dict())
            self._store.save(KEY_DISPLAY_CONFIG, self._display.to_dict())
            self._store.save(KEY_LISTS, self._lists.to_raw())
            self._store.save(KEY_PREFERENCES, dict(self._preferences))
        except LocalStoreError as e:
            logger.exception("Local save failed")
            self._persistence_error = str(e)
            self.bus.error(NotificationKind.PERSISTENCE_FAILED, f"Could not save locally: {e}")
            return False

        if self._persistence_error is not None:
            logger.info("Local save recovered")
        self._persistence_error = None
        return True

    def flush(self) -> bool:
        """Write the snapshot now (cancelling the pending debounced save)."""
        self._save_debouncer.cancel()
        return self._save_now()

    @property
    def save_pending(self) -> bool:
        return self._save_debouncer.pending

    @property
    def sync_pending(self) -> bool:
        return self._sync_debouncer.pending

    @property
    def persistence_error(self) -> str | None:
        return self._persistence_error

    # ---- sync binding (used by SyncCoordinator) ----

    def bind_sync(
        self,
        request: SyncRequest,
        *,
        state: Callable[[], str] | None = None,
        teardown: Callable[[], None] | None = None,
    ) -> None:
        self._sync_request = request
        self._sync_state = state
        self._sync_teardown = teardown

    def _run_sync_request(self) -> Awaitable[Any] | None:
        if self._sync_request is None or self._owner_id is None:
            return None
        return self._sync_request()

    def flush_sync(self) -> Awaitable[Any] | None:
        """Run the pending debounced sync now; returns the awaitable, if any."""
        return self._sync_debouncer.flush()

    @property
    def sync_state(self) -> str:
        return self._sync_state() if self._sync_state is not None else "detached"

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    def stamp_owner(self, owner_id: str | None) -> None:
        """Set (or clear) the owner identity and stamp it on every entity."""
        self._owner_id = owner_id
        if owner_id is None:
            self._sync_debouncer.cancel()
            return
        for e in self._items:
            e.user_id = owner_id

    def entities(self) -> list[TaskEntity]:
        """The backing list itself, tombstones included. Do not copy-and-cache."""
        return self._items

    def find_entity(self, task_id: str) -> TaskEntity | None:
        return next((e for e in self._items if e.id == task_id), None)

    def purge(self, task_id: str) -> bool:
        before = len(self._items)
        self._items[:] = [e for e in self._items if e.id != task_id]
        return len(self._items) != before

    def insert_remote(self, row: Mapping[str, Any]) -> TaskEntity | None:
        """Append an entity built from a remote row (clean, not new)."""
        try:
            entity = TaskEntity.from_persisted(row)
        except ValueError:
            logger.warning("Ignoring remote row without id")
            return None
        entity.mark_synced()
        if entity.is_running:
            self._pause_other_runners(entity.id)
        self._items.append(entity)
        self._register_tags(entity.tags)
        return entity

    def apply_remote_row(self, entity: TaskEntity, row: Mapping[str, Any]) -> None:
        """Remote wins: overwrite durable fields, keep the single-runner rule."""
        if _row_runs(row):
            self._pause_other_runners(entity.id)
        entity.apply_remote(row)
        self._register_tags(entity.tags)

    def commit_sync_result(self) -> None:
        """Publish merged remote state and save it; never re-triggers a sync."""
        self._commit(sync=False)

    # ---- background loops ----

    def start_background(
        self,
        *,
        tick_seconds: float = 1.0,
        on_tick: TickCallback | None = None,
        undo_expiry_seconds: float = 5.0,
    ) -> None:
        """Start the timer tick loop and the undo expiry loop (needs a running loop)."""
        if self._bg_tasks:
            return
        self._bg_tasks = [
            asyncio.create_task(run_timer_loop(self.timer, interval_seconds=tick_seconds, on_tick=on_tick)),
            asyncio.create_task(run_undo_expiry_loop(self.undo_manager, interval_seconds=undo_expiry_seconds)),
        ]

    def close(self) -> None:
        """Flush pending work and tear down timers, loops and the live subscription."""
        if self._closed:
            return
        self._closed = True

        if self._sync_teardown is not None:
            try:
                self._sync_teardown()
            except Exception:
                logger.exception("Sync teardown failed")

        if self._save_debouncer.pending:
            self.flush()
        self._save_debouncer.close()
        self._sync_debouncer.close()

        for task in self._bg_tasks:
            task.cancel()
        self._bg_tasks = []
        self._listeners.clear()
        logger.info("TaskCollection closed")

    # ---- read views ----

    def _now(self) -> datetime:
        return self._clock()

    def all(self) -> list[TaskEntity]:
        return [e for e in self._items if not e.deleted]

    def active(self) -> list[TaskEntity]:
        """Incomplete tasks, filtered, in manual order."""
        items = [e for e in self.all() if not e.is_completed]
        items = apply_filters(items, self._filters, self._now(), respect_status=False)
        return sorted(items, key=lambda e: e.position)

    def completed(self) -> list[TaskEntity]:
        """Completed tasks, filtered, newest completion first."""
        items = [e for e in self.all() if e.is_completed]
        items = apply_filters(items, self._filters, self._now(), respect_status=False)
        with_date = sorted((e for e in items if e.completed_at), key=lambda e: e.completed_at, reverse=True)
        return with_date + [e for e in items if not e.completed_at]

    def overdue(self) -> list[TaskEntity]:
        now = self._now()
        return [e for e in self.all() if e.is_overdue(now)]

    def grouped_tasks(self) -> list[TaskGroup]:
        return group_tasks(self.active(), self._display, self._now())

    def get_by_id(self, task_id: str) -> TaskEntity | None:
        return next((e for e in self._items if e.id == task_id and not e.deleted), None)

    def stats(self) -> TaskStats:
        return compute_stats(self.all(), self._now())

    @property
    def running_task(self) -> TaskEntity | None:
        return self.timer.running_entity()

    @property
    def available_tags(self) -> list[str]:
        return list(self._tags)

    @property
    def all_tags(self) -> list[str]:
        found = set(self._tags)
        for e in self.all():
            found.update(e.tags)
        return sorted(found)

    @property
    def filters(self) -> FilterState:
        return self._filters

    @property
    def display_config(self) -> DisplayConfig:
        return self._display

    @property
    def preferences(self) -> dict[str, Any]:
        return dict(self._preferences)

    @property
    def lists(self) -> tuple[TaskList, ...]:
        return self._lists.lists

    @property
    def can_undo(self) -> bool:
        return self.undo_manager.can_undo

    @property
    def undo_stack(self) -> tuple[UndoAction, ...]:
        return self.undo_manager.stack

    # ---- task CRUD ----

    def add(self, data: TaskCreateInput | str, now: datetime | None = None) -> TaskEntity:
        """
        Create a task. Raises ValueError for a blank title; the title is
        truncated to the configured maximum.
        """
        if isinstance(data, str):
            data = TaskCreateInput(title=data)
        title = (data.title or "").strip()[: self._title_max].strip()
        if not title:
            raise ValueError("Task title must not be empty")

        now = now or self._now()
        if data.position is not None:
            position = data.position
        else:
            position = max((e.position for e in self._items), default=0) + 1

        entity = TaskEntity(
            id=new_id(),
            title=title,
            created_at=now,
            updated_at=now,
            user_id=self._owner_id,
            position=position,
            new=True,
            dirty=True,
        )
        entity.apply_update(
            {
                "description": data.description,
                "notes": data.notes,
                "priority": data.priority,
                "due_at": data.due_at,
                "start_at": data.start_at,
                "end_at": data.end_at,
                "estimated_time": data.estimated_time,
                "recurrence": data.recurrence,
                "tags": list(data.tags),
                "subtasks": [Subtask(s.id, s.title, s.is_completed, s.position) for s in data.subtasks],
                "list_id": data.list_id,
            },
            now,
        )
        entity.updated_at = now

        self._items.append(entity)
        self._register_tags(entity.tags)
        logger.info("Task added id=%s position=%s", entity.id, entity.position)
        self._commit()
        return entity

    def remove(self, task_id: str, now: datetime | None = None) -> UndoAction | None:
        entity = self.get_by_id(task_id)
        if entity is None:
            return None
        now = now or self._now()

        action = self.undo_manager.record(
            UndoKind.DELETE_TASK,
            {"tasks": [entity.snapshot()]},
            f'Deleted "{entity.title}"',
        )
        self._delete_entity(entity, now)
        self._commit()
        self.bus.info(NotificationKind.TASK_DELETED, f'Deleted "{entity.title}"', undo_id=action.id)
        return action

    def _delete_entity(self, entity: TaskEntity, now: datetime) -> None:
        if entity.new and self._owner_id is None:
            # never reached the remote and nobody to tell: hard delete
            if entity.is_running:
                entity.pause_timer(now)
            self.purge(entity.id)
            logger.info("Task purged id=%s", entity.id)
        else:
            entity.mark_deleted(now)
            logger.info("Task tombstoned id=%s", entity.id)

    def update_task(self, task_id: str, fields: Mapping[str, Any], now: datetime | None = None) -> bool:
        entity = self.get_by_id(task_id)
        if entity is None:
            return False
        now = now or self._now()

        if _fields_start_timer(fields) and not entity.is_completed:
            self._pause_other_runners(entity.id, now)

        changed = False
        rest = dict(fields)
        title = rest.pop("title", None)
        if isinstance(title, str):
            changed |= entity.update_title(title, now, max_length=self._title_max)
        if rest:
            changed |= entity.apply_update(rest, now)

        if not changed:
            return False
        if "tags" in fields:
            self._register_tags(entity.tags)
        self._commit()
        return True

    def toggle_complete(self, task_id: str, now: datetime | None = None) -> TaskEntity | None:
        """
        Flip completion. Returns the follow-up occurrence when completing a
        recurring task created one.
        """
        entity = self.get_by_id(task_id)
        if entity is None:
            return None
        now = now or self._now()

        before = entity.snapshot()
        next_fields = entity.toggle_complete(now)
        follow_up = self.add(next_fields, now=now) if next_fields is not None else None

        verb = "Completed" if entity.is_completed else "Reopened"
        self.undo_manager.record(
            UndoKind.COMPLETE_TASK,
            {"task": before, "follow_up_id": follow_up.id if follow_up else None},
            f'{verb} "{entity.title}"',
        )
        self._commit()

        if follow_up is not None:
            self.bus.success(NotificationKind.RECURRENCE_CREATED, "Next occurrence created")
        return follow_up

    def reorder(self, from_index: int, to_index: int, now: datetime | None = None) -> bool:
        """
        Array-move over the active view; every entity in the view gets
        position = its new index.
        """
        view = self.active()
        if not (0 <= from_index < len(view) and 0 <= to_index < len(view)):
            return False
        if from_index == to_index:
            return False
        moved = view.pop(from_index)
        view.insert(to_index, moved)
        self._assign_positions(view, now or self._now())
        return True

    def move(self, dragged_id: str, target_id: str, now: datetime | None = None) -> bool:
        """Drop `dragged_id` in front of `target_id` within the active view."""
        if dragged_id == target_id:
            return False
        view = self.active()
        dragged = next((e for e in view if e.id == dragged_id), None)
        if dragged is None or not any(e.id == target_id for e in view):
            return False
        rest = [e for e in view if e.id != dragged_id]
        idx = next(i for i, e in enumerate(rest) if e.id == target_id)
        rest.insert(idx, dragged)
        self._assign_positions(rest, now or self._now())
        return True

    def _assign_positions(self, view: list[TaskEntity], now: datetime) -> None:
        for i, e in enumerate(view):
            e.position = i
            e.mark_dirty(now)
        self._commit()

    def clear_completed(self, now: datetime | None = None) -> UndoAction | None:
        done = [e for e in self.all() if e.is_completed]
        if not done:
            return None
        now = now or self._now()

        action = self.undo_manager.record(
            UndoKind.CLEAR_COMPLETED,
            {"tasks": [e.snapshot() for e in done]},
            f"Cleared {len(done)} completed tasks",
        )
        for e in done:
            self._delete_entity(e, now)
        self._commit()
        self.bus.info(
            NotificationKind.TASKS_CLEARED,
            f"Cleared {len(done)} completed tasks",
            undo_id=action.id,
        )
        return action

    # ---- timers ----

    def _timer_fields(self) -> dict[str, dict[str, Any]]:
        return {
            e.id: {
                "id": e.id,
                "accumulated_time": e.accumulated_time,
                "last_start_time": format_dt(e.last_start_time),
            }
            for e in self._items
            if not e.deleted
        }

    def _record_timer_change(self, before: dict[str, dict[str, Any]], changed: list[TaskEntity], label: str) -> None:
        self.undo_manager.record(
            UndoKind.TIMER_TOGGLE,
            {"timers": [before[e.id] for e in changed if e.id in before]},
            label,
        )

    def toggle_timer(self, task_id: str, now: datetime | None = None) -> bool:
        """Returns True when the task's timer is running afterwards."""
        before = self._timer_fields()
        changed = self.timer.toggle(task_id, now)
        if not changed:
            return False
        entity = self.get_by_id(task_id)
        running = entity is not None and entity.is_running
        self._record_timer_change(before, changed, "Started timer" if running else "Paused timer")
        self._commit()
        return running

    def start_timer(self, task_id: str, now: datetime | None = None) -> bool:
        before = self._timer_fields()
        changed = self.timer.start(task_id, now)
        if not changed:
            return False
        self._record_timer_change(before, changed, "Started timer")
        self._commit()
        return True

    def pause_timer(self, task_id: str, now: datetime | None = None) -> bool:
        if not self.timer.pause(task_id, now):
            return False
        self._commit()
        return True

    def pause_all_timers(self, now: datetime | None = None) -> int:
        paused = self.timer.pause_all(now)
        if paused:
            self._commit()
        return len(paused)

    def reset_timer(self, task_id: str, now: datetime | None = None) -> bool:
        if not self.timer.reset(task_id, now):
            return False
        self._commit()
        return True

    def _pause_other_runners(self, keep_id: str, now: datetime | None = None) -> None:
        for e in self._items:
            if e.id != keep_id and e.is_running:
                e.pause_timer(now or self._now())

    # ---- tags ----

    def _register_tags(self, tags: Iterable[str]) -> bool:
        changed = False
        for tag in tags:
            norm = normalize_tag(tag)
            if norm and norm not in self._tags:
                self._tags.append(norm)
                changed = True
        if changed:
            self._tags.sort()
        return changed

    def _sync_tags_from_tasks(self) -> None:
        for e in self.all():
            self._register_tags(e.tags)

    def add_tag(self, tag: str) -> bool:
        """Add a tag to the global vocabulary."""
        if not self._register_tags([tag]):
            return False
        self._commit(sync=False)
        return True

    def delete_tag(self, tag: str, now: datetime | None = None) -> UndoAction | None:
        """Remove a tag everywhere (vocabulary, tasks, filters). Undoable."""
        norm = normalize_tag(tag)
        if not norm:
            return None
        affected = [e for e in self.all() if norm in e.tags]
        in_vocab = norm in self._tags
        if not affected and not in_vocab:
            return None
        now = now or self._now()
        was_in_filters = norm in self._filters.tags

        action = self.undo_manager.record(
            UndoKind.DELETE_TAG,
            {"tag": norm, "task_ids": [e.id for e in affected], "was_in_filters": was_in_filters},
            f'Deleted tag "{norm}"',
        )

        self._tags = [t for t in self._tags if t != norm]
        for e in affected:
            e.remove_tag(norm, now)
        if was_in_filters:
            self._filters.tags = [t for t in self._filters.tags if t != norm]

        self._commit()
        self.bus.info(NotificationKind.TAG_DELETED, f'Deleted tag "{norm}"', undo_id=action.id)
        return action

    def add_tag_to_task(self, task_id: str, tag: str, now: datetime | None = None) -> bool:
        entity = self.get_by_id(task_id)
        if entity is None or not entity.add_tag(tag, now or self._now()):
            return False
        self._register_tags(entity.tags)
        self._commit()
        return True

    def remove_tag_from_task(self, task_id: str, tag: str, now: datetime | None = None) -> bool:
        entity = self.get_by_id(task_id)
        if entity is None or not entity.remove_tag(tag, now or self._now()):
            return False
        self._commit()
        return True

    # ---- subtasks ----

    def add_subtask(self, task_id: str, title: str, now: datetime | None = None) -> Subtask | None:
        entity = self.get_by_id(task_id)
        if entity is None:
            return None
        st = entity.add_subtask(title, now or self._now())
        if st is not None:
            self._commit()
        return st

    def toggle_subtask(self, task_id: str, subtask_id: str, now: datetime | None = None) -> bool:
        entity = self.get_by_id(task_id)
        if entity is None or not entity.toggle_subtask(subtask_id, now or self._now()):
            return False
        self._commit()
        return True

    def rename_subtask(self, task_id: str, subtask_id: str, title: str, now: datetime | None = None) -> bool:
        entity = self.get_by_id(task_id)
        if entity is None or not entity.rename_subtask(subtask_id, title, now or self._now()):
            return False
        self._commit()
        return True

    def remove_subtask(self, task_id: str, subtask_id: str, now: datetime | None = None) -> bool:
        entity = self.get_by_id(task_id)
        if entity is None or not entity.remove_subtask(subtask_id, now or self._now()):
            return False
        self._commit()
        return True

    # ---- filters / display / preferences ----

    def set_filters(self, **changes: Any) -> FilterState:
        self._filters = self._filters.merged(changes)
        self._commit(sync=False)
        return self._filters

    def toggle_tag_filter(self, tag: str) -> None:
        """Select a single tag as the filter, or clear it when already selected."""
        norm = normalize_tag(tag)
        if not norm:
            return
        if norm in self._filters.tags:
            self._filters.tags = [t for t in self._filters.tags if t != norm]
        else:
            self._filters.tags = [norm]
        self._commit(sync=False)

    def clear_filters(self) -> None:
        self._filters = FilterState()
        self._commit(sync=False)

    def set_display_config(self, **changes: Any) -> DisplayConfig:
        self._display = self._display.merged(changes)
        self._commit(sync=False)
        return self._display

    def update_preference(self, key: str, value: Any) -> None:
        self._preferences[key] = value
        self._commit(sync=False)

    # ---- lists ----

    def add_list(self, title: str, icon: str | None = None) -> TaskList | None:
        tl = self._lists.add(title, icon)
        if tl is not None:
            self._commit(sync=False)
        return tl

    def rename_list(self, list_id: str, title: str, icon: str | None = None) -> bool:
        if not self._lists.rename(list_id, title, icon):
            return False
        self._commit(sync=False)
        return True

    def remove_list(self, list_id: str, now: datetime | None = None) -> bool:
        """Remove a list; its tasks move to the default list."""
        if not self._lists.remove(list_id):
            return False
        now = now or self._now()
        for e in self.all():
            if e.list_id == list_id:
                e.apply_update({"list_id": None}, now)
        if self._filters.list_id == list_id:
            self._filters.list_id = None
        self._commit()
        return True

    # ---- undo ----

    def undo(self, action_id: str | None = None) -> bool:
        return self.undo_manager.undo(action_id)

    def expire_undo(self, now: float | None = None) -> int:
        return self.undo_manager.expire(now)

    def _dispatch_undo(self, action: UndoAction) -> None:
        handlers: dict[UndoKind, Callable[[dict[str, Any], datetime], str]] = {
            UndoKind.DELETE_TASK: self._undo_restore_tasks,
            UndoKind.CLEAR_COMPLETED: self._undo_restore_tasks,
            UndoKind.DELETE_TAG: self._undo_delete_tag,
            UndoKind.TIMER_TOGGLE: self._undo_timer_toggle,
            UndoKind.COMPLETE_TASK: self._undo_complete,
        }
        message = handlers[action.kind](action.payload, self._now())
        self._commit()
        self.bus.success(NotificationKind.UNDO_APPLIED, message)

    def _undo_restore_tasks(self, payload: dict[str, Any], now: datetime) -> str:
        snapshots = payload.get("tasks") or []
        for snap in snapshots:
            self._restore_snapshot(snap, now)
        if len(snapshots) == 1:
            return "Task restored"
        return f"Restored {len(snapshots)} tasks"

    def _restore_snapshot(self, snap: dict[str, Any], now: datetime) -> TaskEntity:
        restored = TaskEntity.from_persisted(snap)
        restored.deleted = False
        restored.sync_error = None
        if self._owner_id is not None:
            restored.user_id = self._owner_id

        idx = next((i for i, e in enumerate(self._items) if e.id == restored.id), None)
        if idx is not None:
            # tombstone still waiting for its remote delete
            restored.new = self._items[idx].new
        else:
            # purged locally (and gone remotely if it ever got there): re-create
            restored.new = True

        if restored.is_running:
            self._pause_other_runners(restored.id, now)
        restored.mark_dirty(now)

        if idx is not None:
            self._items[idx] = restored
        else:
            self._items.append(restored)
        self._register_tags(restored.tags)
        return restored

    def _undo_delete_tag(self, payload: dict[str, Any], now: datetime) -> str:
        tag = payload["tag"]
        self._register_tags([tag])
        for task_id in payload.get("task_ids", []):
            entity = self.get_by_id(task_id)
            if entity is not None:
                entity.add_tag(tag, now)
        if payload.get("was_in_filters") and tag not in self._filters.tags:
            self._filters.tags = [*self._filters.tags, tag]
        return f'Restored tag "{tag}"'

    def _undo_timer_toggle(self, payload: dict[str, Any], now: datetime) -> str:
        records = payload.get("timers") or []
        # restore paused states first so a restored runner never overlaps
        for rec in sorted(records, key=lambda r: r.get("last_start_time") is not None):
            entity = self.get_by_id(rec["id"])
            if entity is None:
                continue
            if _row_runs(rec) and not entity.is_completed:
                self._pause_other_runners(entity.id, now)
            entity.apply_remote(
                {"accumulated_time": rec["accumulated_time"], "last_start_time": rec["last_start_time"]}
            )
            entity.mark_dirty(now)
        return "Timer restored"

    def _undo_complete(self, payload: dict[str, Any], now: datetime) -> str:
        before = payload["task"]
        follow_up_id = payload.get("follow_up_id")
        if follow_up_id:
            follow_up = self.get_by_id(follow_up_id)
            if follow_up is not None:
                self._delete_entity(follow_up, now)

        entity = self.get_by_id(before["id"])
        if entity is None:
            return "Nothing to restore"
        if _row_runs(before):
            self._pause_other_runners(entity.id, now)
        entity.apply_remote(
            {
                key: before.get(key)
                for key in ("is_completed", "completed_at", "accumulated_time", "last_start_time")
            }
        )
        entity.mark_dirty(now)
        return f'Restored "{entity.title}"'


def _row_runs(row: Mapping[str, Any]) -> bool:
    return row.get("last_start_time") is not None and not row.get("is_completed", False)


def _fields_start_timer(fields: Mapping[str, Any]) -> bool:
    for key in ("last_start_time", "lastStartTime"):
        if fields.get(key) is not None:
            return True
    return False
