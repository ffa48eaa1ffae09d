# src/chronos_tasks/tasks/display.py

from __future__ import annotations

"""
Display engine: filtering, sorting, grouping and stats over task entities.

Everything here is a pure function of (tasks, config, now). The collection
decides which entities are visible (tombstones excluded) before calling in.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..core.timeutil import is_overdue, is_today, is_tomorrow
from .task_lists import DEFAULT_LIST_ID
from .task_models import Priority, TaskEntity, normalize_tags

logger = logging.getLogger(__name__)


class GroupBy(StrEnum):
    NONE = "none"
    PRIORITY = "priority"
    DATE = "date"


class SortBy(StrEnum):
    PRIORITY = "priority"
    DATE = "date"
    ALPHABETICAL = "alphabetical"
    POSITION = "position"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


class StatusFilter(StrEnum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"


def _enum_or(enum_cls, raw: object, default):
    try:
        return enum_cls(raw)
    except ValueError:
        return default


@dataclass(slots=True)
class DisplayConfig:
    group_by: GroupBy = GroupBy.NONE
    sort_by: SortBy = SortBy.POSITION
    sort_order: SortOrder = SortOrder.ASC

    @classmethod
    def from_dict(cls, raw: object) -> DisplayConfig:
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            group_by=_enum_or(GroupBy, raw.get("group_by"), GroupBy.NONE),
            sort_by=_enum_or(SortBy, raw.get("sort_by"), SortBy.POSITION),
            sort_order=_enum_or(SortOrder, raw.get("sort_order"), SortOrder.ASC),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "group_by": self.group_by.value,
            "sort_by": self.sort_by.value,
            "sort_order": self.sort_order.value,
        }

    def merged(self, changes: Mapping[str, Any]) -> DisplayConfig:
        """Partial update; unknown keys and invalid values are ignored."""
        current = self.to_dict()
        current.update({k: v for k, v in changes.items() if k in current})
        return DisplayConfig.from_dict(current)


@dataclass(slots=True)
class FilterState:
    """
    Active filters.

    - priority: a Priority, or "all"
    - list_id: None shows every list
    - tags: AND semantics (a task must carry every tag)
    - has_due_date: None = don't care
    """

    priority: Priority | str = "all"
    list_id: str | None = None
    status: StatusFilter = StatusFilter.ALL
    tags: list[str] = field(default_factory=list)
    has_due_date: bool | None = None

    @classmethod
    def from_dict(cls, raw: object) -> FilterState:
        if not isinstance(raw, Mapping):
            return cls()

        priority: Priority | str = "all"
        raw_p = raw.get("priority", "all")
        if raw_p != "all":
            try:
                priority = Priority.from_raw(raw_p)
            except ValueError:
                priority = "all"

        list_id = raw.get("list_id")
        tags = raw.get("tags")
        has_due = raw.get("has_due_date")
        return cls(
            priority=priority,
            list_id=list_id if isinstance(list_id, str) and list_id else None,
            status=_enum_or(StatusFilter, raw.get("status"), StatusFilter.ALL),
            tags=normalize_tags(tags) if isinstance(tags, (list, tuple)) else [],
            has_due_date=has_due if isinstance(has_due, bool) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority.value if isinstance(self.priority, Priority) else "all",
            "list_id": self.list_id,
            "status": self.status.value,
            "tags": list(self.tags),
            "has_due_date": self.has_due_date,
        }

    def merged(self, changes: Mapping[str, Any]) -> FilterState:
        current = self.to_dict()
        current.update({k: v for k, v in changes.items() if k in current})
        return FilterState.from_dict(current)


@dataclass(slots=True)
class TaskGroup:
    id: str
    label: str
    tasks: list[TaskEntity]


@dataclass(frozen=True, slots=True)
class TaskStats:
    total_tasks: int
    completed_tasks: int
    active_tasks: int
    overdue_tasks: int
    total_time_ms: int
    estimated_time_ms: int
    average_time_per_task: float
    completion_rate: float
    tag_counts: dict[str, int]


# ---- filtering ----


def apply_filters(
        tasks: Iterable[TaskEntity],
        filters: FilterState,
        now: datetime,
        *,
        respect_status: bool = True,
) -> list[TaskEntity]:
    out: list[TaskEntity] = []
    for t in tasks:
        if filters.tags and not all(tag in t.tags for tag in filters.tags):
            continue
        if filters.priority != "all" and t.priority != filters.priority:
            continue
        if filters.list_id is not None and (t.list_id or DEFAULT_LIST_ID) != filters.list_id:
            continue
        if filters.has_due_date is not None and (t.due_at is not None) != filters.has_due_date:
            continue
        if respect_status and not _status_matches(t, filters.status, now):
            continue
        out.append(t)
    return out


def _status_matches(task: TaskEntity, status: StatusFilter, now: datetime) -> bool:
    if status == StatusFilter.ACTIVE:
        return not task.is_completed
    if status == StatusFilter.COMPLETED:
        return task.is_completed
    if status == StatusFilter.OVERDUE:
        return task.is_overdue(now)
    return True


# ---- sorting ----

_SORT_KEYS = {
    SortBy.PRIORITY: lambda t: t.priority.weight,
    SortBy.ALPHABETICAL: lambda t: t.title.casefold(),
    SortBy.POSITION: lambda t: t.position,
}


def sort_tasks(tasks: Iterable[TaskEntity], config: DisplayConfig) -> list[TaskEntity]:
    """
    Stable sort by the configured key. Ties keep their input order in both
    directions; undated tasks go last for the date sort in both directions.
    """
    items = list(tasks)
    reverse = config.sort_order == SortOrder.DESC

    if config.sort_by == SortBy.DATE:
        dated = [t for t in items if t.due_at is not None]
        undated = [t for t in items if t.due_at is None]
        dated.sort(key=lambda t: t.due_at, reverse=reverse)
        return dated + undated

    items.sort(key=_SORT_KEYS.get(config.sort_by, _SORT_KEYS[SortBy.POSITION]), reverse=reverse)
    return items


# ---- grouping ----

_PRIORITY_GROUPS: Sequence[tuple[Priority, str]] = (
    (Priority.HIGH, "High Priority"),
    (Priority.MEDIUM, "Medium Priority"),
    (Priority.LOW, "Low Priority"),
    (Priority.NONE, "No Priority"),
)

_DATE_GROUPS: Sequence[tuple[str, str]] = (
    ("overdue", "Overdue"),
    ("today", "Today"),
    ("tomorrow", "Tomorrow"),
    ("upcoming", "Upcoming"),
    ("noDate", "No Date"),
)


def _date_bucket(task: TaskEntity, now: datetime) -> str:
    due = task.due_at
    if due is None:
        return "noDate"
    if is_overdue(due, now):
        return "overdue"
    if is_today(due, now):
        return "today"
    if is_tomorrow(due, now):
        return "tomorrow"
    return "upcoming"


def group_tasks(tasks: Iterable[TaskEntity], config: DisplayConfig, now: datetime) -> list[TaskGroup]:
    """
    Group then sort within each group. Empty groups are omitted, except the
    single "all" group of the ungrouped view.
    """
    items = list(tasks)

    if config.group_by == GroupBy.NONE:
        return [TaskGroup(id="all", label="All Tasks", tasks=sort_tasks(items, config))]

    if config.group_by == GroupBy.PRIORITY:
        groups = []
        for prio, label in _PRIORITY_GROUPS:
            members = [t for t in items if t.priority == prio]
            if members:
                groups.append(TaskGroup(id=prio.value, label=label, tasks=sort_tasks(members, config)))
        return groups

    buckets: dict[str, list[TaskEntity]] = {key: [] for key, _ in _DATE_GROUPS}
    for t in items:
        buckets[_date_bucket(t, now)].append(t)
    return [
        TaskGroup(id=key, label=label, tasks=sort_tasks(buckets[key], config))
        for key, label in _DATE_GROUPS
        if buckets[key]
    ]


# ---- stats ----


def compute_stats(tasks: Sequence[TaskEntity], now: datetime) -> TaskStats:
    total = len(tasks)
    completed = sum(1 for t in tasks if t.is_completed)
    overdue = sum(1 for t in tasks if t.is_overdue(now))
    total_time = sum(t.displayed_elapsed_ms(now) for t in tasks)
    estimated = sum(t.estimated_time or 0 for t in tasks)

    tag_counts: dict[str, int] = {}
    for t in tasks:
        for tag in t.tags:
            tag_counts[tag] = tag_counts.get(tag, 0) + 1

    return TaskStats(
        total_tasks=total,
        completed_tasks=completed,
        active_tasks=total - completed,
        overdue_tasks=overdue,
        total_time_ms=total_time,
        estimated_time_ms=estimated,
        average_time_per_task=(total_time / total) if total else 0.0,
        completion_rate=(completed / total * 100.0) if total else 0.0,
        tag_counts=tag_counts,
    )
