# src/chronos_tasks/tasks/task_models.py

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, NamedTuple

from ..core.timeutil import (
    elapsed_ms,
    format_dt,
    from_wall_clock,
    is_overdue,
    local_now,
    parse_dt,
    wall_clock,
)
from .recurrence import RecurrenceRule, next_occurrence

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000
MAX_TAGS_PER_TASK = 10
TAG_MAX_LENGTH = 30
MAX_SUBTASKS_PER_TASK = 20


def new_id() -> str:
    return str(uuid.uuid4())


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @property
    def weight(self) -> int:
        """Sort weight: high=0 ... none=3."""
        return _PRIORITY_WEIGHT[self]

    @classmethod
    def from_raw(cls, raw: object) -> Priority:
        """None means "no priority"; anything unknown raises ValueError."""
        if raw is None:
            return cls.NONE
        if isinstance(raw, Priority):
            return raw
        if isinstance(raw, str):
            return cls(raw.strip().lower())
        raise ValueError(f"invalid priority: {raw!r}")


_PRIORITY_WEIGHT = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2, Priority.NONE: 3}


def normalize_tag(raw: object) -> str | None:
    if not isinstance(raw, str):
        return None
    tag = raw.strip().lower()[:TAG_MAX_LENGTH].strip()
    return tag or None


def normalize_tags(raw: Iterable[object]) -> list[str]:
    """Lower-case, strip, dedupe (first occurrence wins), cap the count."""
    out: list[str] = []
    for item in raw:
        tag = normalize_tag(item)
        if tag and tag not in out:
            out.append(tag)
        if len(out) >= MAX_TAGS_PER_TASK:
            break
    return out


@dataclass(slots=True)
class Subtask:
    id: str
    title: str
    is_completed: bool = False
    position: int = 0

    @classmethod
    def from_raw(cls, raw: object, *, default_position: int = 0) -> Subtask | None:
        if isinstance(raw, Subtask):
            return cls(raw.id, raw.title, raw.is_completed, raw.position)
        if not isinstance(raw, Mapping):
            return None
        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            return None
        sid = raw.get("id")
        pos = raw.get("position", default_position)
        return cls(
            id=str(sid) if sid else new_id(),
            title=title.strip(),
            is_completed=bool(raw.get("is_completed", False)),
            position=pos if isinstance(pos, int) and not isinstance(pos, bool) else default_position,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "is_completed": self.is_completed,
            "position": self.position,
        }


class SubtaskProgress(NamedTuple):
    completed: int
    total: int
    percent: float


@dataclass(slots=True)
class TaskCreateInput:
    """What TaskCollection.add() accepts (also what a recurring task hands back)."""

    title: str
    description: str | None = None
    notes: str | None = None
    priority: Priority = Priority.NONE
    due_at: datetime | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    estimated_time: int | None = None
    recurrence: RecurrenceRule | None = None
    tags: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    position: int | None = None
    list_id: str | None = None


# ---- field coercion (lenient merge) ----


def _opt_text(max_len: int | None = None):
    def coerce(value: object) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise TypeError("expected text")
        return value[:max_len] if max_len else value

    return coerce


def _opt_str_id(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise TypeError("expected id string")
    return value


def _title(value: object) -> str:
    if not isinstance(value, str):
        raise TypeError("expected title string")
    title = value.strip()[:TITLE_MAX_LENGTH].strip()
    if not title:
        raise ValueError("empty title")
    return title


def _non_negative_int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("expected number")
    if value < 0:
        raise ValueError("negative value")
    return int(value)


def _opt_non_negative_int(value: object) -> int | None:
    return None if value is None else _non_negative_int(value)


def _int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("expected integer")
    return int(value)


def _bool(value: object) -> bool:
    if not isinstance(value, bool):
        raise TypeError("expected bool")
    return value


def _tags(value: object) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise TypeError("expected tag list")
    return normalize_tags(value)


def _subtasks(value: object) -> list[Subtask]:
    if not isinstance(value, (list, tuple)):
        raise TypeError("expected subtask list")
    out: list[Subtask] = []
    for i, raw in enumerate(value):
        st = Subtask.from_raw(raw, default_position=i)
        if st is not None:
            out.append(st)
        if len(out) >= MAX_SUBTASKS_PER_TASK:
            break
    return out


def _recurrence(value: object) -> RecurrenceRule | None:
    if value is None:
        return None
    rule = RecurrenceRule.from_dict(value)
    if rule is None:
        raise ValueError("invalid recurrence rule")
    return rule


_COERCERS = {
    "title": _title,
    "description": _opt_text(DESCRIPTION_MAX_LENGTH),
    "notes": _opt_text(),
    "is_completed": _bool,
    "priority": Priority.from_raw,
    "due_at": parse_dt,
    "start_at": parse_dt,
    "end_at": parse_dt,
    "accumulated_time": _non_negative_int,
    "estimated_time": _opt_non_negative_int,
    "last_start_time": parse_dt,
    "position": _int,
    "tags": _tags,
    "subtasks": _subtasks,
    "recurrence": _recurrence,
    "list_id": _opt_str_id,
    "user_id": _opt_str_id,
    "completed_at": parse_dt,
    "created_at": parse_dt,
    "updated_at": parse_dt,
}

# Fields a caller may change through apply_update(); timestamps owned by the
# entity itself (created/updated) are excluded.
_UPDATABLE = frozenset(_COERCERS) - {"created_at", "updated_at"}

_ALIASES = {
    "isCompleted": "is_completed",
    "dueAt": "due_at",
    "startAt": "start_at",
    "endAt": "end_at",
    "accumulatedTime": "accumulated_time",
    "estimatedTime": "estimated_time",
    "lastStartTime": "last_start_time",
    "listId": "list_id",
    "userId": "user_id",
    "completedAt": "completed_at",
}

_REQUIRED_NON_NULL = frozenset(
    {"title", "is_completed", "accumulated_time", "position", "tags", "subtasks", "created_at", "updated_at"}
)


def _coerce(name: str, value: object) -> Any:
    if value is None and name in _REQUIRED_NON_NULL:
        raise ValueError(f"{name} cannot be null")
    return _COERCERS[name](value)


@dataclass(slots=True, eq=False)
class TaskEntity:
    """
    One task: durable fields, timer state, and sync bookkeeping.

    Timer model:
    - running  <=>  last_start_time is not None and not is_completed
    - displayed elapsed = accumulated_time + (now - last_start_time) while running

    Every mutator bumps updated_at and sets `dirty`. Nothing here raises on bad
    input: malformed fields are dropped one by one.
    """

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    notes: str | None = None
    is_completed: bool = False
    priority: Priority = Priority.NONE
    due_at: datetime | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    accumulated_time: int = 0
    estimated_time: int | None = None
    last_start_time: datetime | None = None
    position: int = 0
    tags: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    recurrence: RecurrenceRule | None = None
    list_id: str | None = None
    completed_at: datetime | None = None
    user_id: str | None = None

    # sync bookkeeping
    dirty: bool = False
    new: bool = False
    deleted: bool = False
    sync_error: str | None = None

    # in-memory only
    revision: int = field(default=0, repr=False)
    _high_water: int = field(default=0, repr=False)

    # ---- derived state ----

    @property
    def is_running(self) -> bool:
        return self.last_start_time is not None and not self.is_completed

    def displayed_elapsed_ms(self, now: datetime | None = None) -> int:
        """
        Time to show the user. Never decreases while running: a backward clock
        step is absorbed by the high-water mark.
        """
        if not self.is_running or self.last_start_time is None:
            return self.accumulated_time
        now = now or local_now()
        value = self.accumulated_time + elapsed_ms(self.last_start_time, now)
        if value < self._high_water:
            return self._high_water
        self._high_water = value
        return value

    def tick(self, now: datetime | None = None) -> int:
        return self.displayed_elapsed_ms(now or local_now())

    def is_overdue(self, now: datetime | None = None) -> bool:
        if self.due_at is None or self.is_completed:
            return False
        return is_overdue(self.due_at, now or local_now())

    def progress(self, now: datetime | None = None) -> float:
        if not self.estimated_time:
            return 0.0
        return min(100.0, self.displayed_elapsed_ms(now) / self.estimated_time * 100.0)

    @property
    def subtask_progress(self) -> SubtaskProgress:
        total = len(self.subtasks)
        done = sum(1 for s in self.subtasks if s.is_completed)
        return SubtaskProgress(done, total, (done / total * 100.0) if total else 0.0)

    # ---- bookkeeping ----

    def mark_dirty(self, now: datetime | None = None) -> None:
        self.dirty = True
        self.updated_at = now or local_now()
        self.revision += 1

    def mark_synced(self) -> None:
        self.dirty = False
        self.new = False
        self.sync_error = None

    def mark_deleted(self, now: datetime | None = None) -> None:
        now = now or local_now()
        if self.is_running:
            self.pause_timer(now)
        self.deleted = True
        self.mark_dirty(now)

    # ---- timer ----

    def start_timer(self, now: datetime | None = None) -> bool:
        if self.is_completed or self.is_running:
            return False
        now = now or local_now()
        self.last_start_time = now
        self._high_water = self.accumulated_time
        self.mark_dirty(now)
        return True

    def pause_timer(self, now: datetime | None = None) -> bool:
        if not self.is_running or self.last_start_time is None:
            return False
        now = now or local_now()
        folded = self.accumulated_time + elapsed_ms(self.last_start_time, now)
        self.accumulated_time = max(folded, self._high_water)
        self.last_start_time = None
        self._high_water = 0
        self.mark_dirty(now)
        return True

    def toggle_timer(self, now: datetime | None = None) -> bool:
        """Returns True when the timer is running afterwards."""
        if self.is_running:
            self.pause_timer(now)
            return False
        return self.start_timer(now)

    def reset_timer(self, now: datetime | None = None) -> None:
        now = now or local_now()
        if self.is_running:
            self.pause_timer(now)
        self.accumulated_time = 0
        self._high_water = 0
        self.mark_dirty(now)

    # ---- completion ----

    def complete(self, now: datetime | None = None) -> TaskCreateInput | None:
        """
        Mark complete (pausing a running timer first).

        Returns the creation request for the next occurrence when the task
        recurs and the rule still yields a date, else None.
        """
        if self.is_completed:
            return None
        now = now or local_now()
        if self.is_running:
            self.pause_timer(now)
        self.is_completed = True
        self.completed_at = now
        self.mark_dirty(now)

        if self.recurrence is None:
            return None
        nxt = next_occurrence(self.recurrence, now)
        if nxt is None:
            logger.debug("Recurrence exhausted task_id=%s rule=%s", self.id, self.recurrence)
            return None
        return self._next_instance_input(nxt)

    def uncomplete(self, now: datetime | None = None) -> bool:
        if not self.is_completed:
            return False
        self.is_completed = False
        self.completed_at = None
        # a stale start stamp must not turn into a running timer
        self.last_start_time = None
        self.mark_dirty(now)
        return True

    def toggle_complete(self, now: datetime | None = None) -> TaskCreateInput | None:
        if self.is_completed:
            self.uncomplete(now)
            return None
        return self.complete(now)

    def _next_instance_input(self, nxt: datetime) -> TaskCreateInput:
        def shift(original: datetime | None) -> datetime | None:
            if original is None:
                return None
            # new local date, old local time of day
            wall = datetime.combine(wall_clock(nxt).date(), wall_clock(original).time())
            return from_wall_clock(wall, original)

        return TaskCreateInput(
            title=self.title,
            description=self.description,
            notes=self.notes,
            priority=self.priority,
            due_at=shift(self.due_at),
            start_at=shift(self.start_at),
            end_at=shift(self.end_at),
            estimated_time=self.estimated_time,
            recurrence=self.recurrence,
            tags=list(self.tags),
            subtasks=[
                Subtask(id=new_id(), title=s.title, is_completed=False, position=s.position)
                for s in self.subtasks
            ],
            list_id=self.list_id,
        )

    # ---- field updates ----

    def apply_update(self, fields: Mapping[str, Any], now: datetime | None = None) -> bool:
        """
        Lenient partial merge.

        - only keys present in `fields` are touched (absent != None)
        - an explicit None clears a nullable field
        - invalid values are dropped one by one
        Returns True when anything changed (and only then marks dirty).
        """
        now = now or local_now()
        changed = False

        for key, value in fields.items():
            name = _ALIASES.get(key, key)
            if name not in _UPDATABLE:
                logger.debug("apply_update: ignoring field %r task_id=%s", key, self.id)
                continue
            try:
                coerced = _coerce(name, value)
            except (TypeError, ValueError) as e:
                logger.debug("apply_update: dropping %s=%r task_id=%s (%s)", name, value, self.id, e)
                continue

            if name == "is_completed":
                changed |= self._set_completed_flag(coerced, now, explicit_completed_at="completed_at" in fields)
                continue

            if getattr(self, name) != coerced:
                setattr(self, name, coerced)
                changed = True

        if changed:
            if not self.is_running:
                self._high_water = 0
            self.mark_dirty(now)
        return changed

    def _set_completed_flag(self, value: bool, now: datetime, *, explicit_completed_at: bool) -> bool:
        if value == self.is_completed:
            return False
        if value:
            if self.is_running and self.last_start_time is not None:
                self.accumulated_time = max(
                    self.accumulated_time + elapsed_ms(self.last_start_time, now), self._high_water
                )
                self.last_start_time = None
            self.is_completed = True
            if not explicit_completed_at:
                self.completed_at = now
        else:
            self.is_completed = False
            self.last_start_time = None
            if not explicit_completed_at:
                self.completed_at = None
        return True

    def apply_remote(self, row: Mapping[str, Any]) -> None:
        """Overwrite durable fields from a remote row. Does not touch bookkeeping."""
        for key, value in row.items():
            name = _ALIASES.get(key, key)
            if name not in _COERCERS:
                continue
            try:
                setattr(self, name, _coerce(name, value))
            except (TypeError, ValueError):
                logger.debug("apply_remote: dropping %s=%r task_id=%s", name, value, self.id)
        self._high_water = 0

    def update_title(self, title: str, now: datetime | None = None, *, max_length: int = TITLE_MAX_LENGTH) -> bool:
        trimmed = (title or "").strip()[:max_length].strip()
        if not trimmed or trimmed == self.title:
            return False
        self.title = trimmed
        self.mark_dirty(now)
        return True

    # ---- tags ----

    def add_tag(self, tag: str, now: datetime | None = None) -> bool:
        norm = normalize_tag(tag)
        if not norm or norm in self.tags or len(self.tags) >= MAX_TAGS_PER_TASK:
            return False
        self.tags = [*self.tags, norm]
        self.mark_dirty(now)
        return True

    def remove_tag(self, tag: str, now: datetime | None = None) -> bool:
        norm = normalize_tag(tag)
        if not norm or norm not in self.tags:
            return False
        self.tags = [t for t in self.tags if t != norm]
        self.mark_dirty(now)
        return True

    def set_tags(self, tags: Iterable[str], now: datetime | None = None) -> bool:
        norm = normalize_tags(tags)
        if norm == self.tags:
            return False
        self.tags = norm
        self.mark_dirty(now)
        return True

    # ---- subtasks ----

    def add_subtask(self, title: str, now: datetime | None = None) -> Subtask | None:
        title = (title or "").strip()
        if not title or len(self.subtasks) >= MAX_SUBTASKS_PER_TASK:
            return None
        st = Subtask(id=new_id(), title=title, is_completed=False, position=len(self.subtasks))
        self.subtasks = [*self.subtasks, st]
        self.mark_dirty(now)
        return st

    def toggle_subtask(self, subtask_id: str, now: datetime | None = None) -> bool:
        for st in self.subtasks:
            if st.id == subtask_id:
                st.is_completed = not st.is_completed
                self.mark_dirty(now)
                return True
        return False

    def rename_subtask(self, subtask_id: str, title: str, now: datetime | None = None) -> bool:
        title = (title or "").strip()
        if not title:
            return False
        for st in self.subtasks:
            if st.id == subtask_id and st.title != title:
                st.title = title
                self.mark_dirty(now)
                return True
        return False

    def remove_subtask(self, subtask_id: str, now: datetime | None = None) -> bool:
        kept = [s for s in self.subtasks if s.id != subtask_id]
        if len(kept) == len(self.subtasks):
            return False
        for i, st in enumerate(kept):
            st.position = i
        self.subtasks = kept
        self.mark_dirty(now)
        return True

    # ---- serialization ----

    def to_remote(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "list_id": self.list_id,
            "title": self.title,
            "description": self.description,
            "notes": self.notes,
            "is_completed": self.is_completed,
            "priority": self.priority.value,
            "due_at": format_dt(self.due_at),
            "start_at": format_dt(self.start_at),
            "end_at": format_dt(self.end_at),
            "accumulated_time": self.accumulated_time,
            "estimated_time": self.estimated_time,
            "last_start_time": format_dt(self.last_start_time),
            "position": self.position,
            "tags": list(self.tags),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "completed_at": format_dt(self.completed_at),
            "created_at": format_dt(self.created_at),
            "updated_at": format_dt(self.updated_at),
        }

    def to_persisted(self) -> dict[str, Any]:
        out = self.to_remote()
        out["_dirty"] = self.dirty
        out["_new"] = self.new
        out["_deleted"] = self.deleted
        out["_syncError"] = self.sync_error
        return out

    def snapshot(self) -> dict[str, Any]:
        """Independent copy of everything durable plus bookkeeping (undo payload)."""
        return self.to_persisted()

    @classmethod
    def from_persisted(cls, record: Mapping[str, Any]) -> TaskEntity:
        """
        Build an entity from a persisted or remote record.

        Raises ValueError only when the record has no usable id; every other
        malformed field falls back to its default.
        """
        raw_id = record.get("id")
        if not isinstance(raw_id, str) or not raw_id.strip():
            raise ValueError("task record without id")

        now = local_now()
        created = _coerce_or(record, "created_at", now)
        entity = cls(
            id=raw_id,
            title=_coerce_or(record, "title", "Untitled"),
            created_at=created,
            updated_at=_coerce_or(record, "updated_at", created),
        )
        for name in _COERCERS:
            if name in ("title", "created_at", "updated_at") or name not in record:
                continue
            try:
                setattr(entity, name, _coerce(name, record[name]))
            except (TypeError, ValueError):
                logger.debug("from_persisted: dropping %s=%r task_id=%s", name, record[name], raw_id)

        entity.dirty = bool(record.get("_dirty", False))
        entity.new = bool(record.get("_new", False))
        entity.deleted = bool(record.get("_deleted", False))
        err = record.get("_syncError")
        entity.sync_error = err if isinstance(err, str) else None
        return entity


def _coerce_or(record: Mapping[str, Any], name: str, default: Any) -> Any:
    if name not in record:
        return default
    try:
        value = _coerce(name, record[name])
    except (TypeError, ValueError):
        return default
    return default if value is None else value
