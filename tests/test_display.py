# tests/test_display.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from chronos_tasks.tasks.display import (
    DisplayConfig,
    FilterState,
    GroupBy,
    SortBy,
    SortOrder,
    StatusFilter,
    apply_filters,
    compute_stats,
    group_tasks,
    sort_tasks,
)
from chronos_tasks.tasks.task_models import Priority
from fakes import T0, make_entity


def _due(days: int, hour: int = 12) -> datetime:
    return datetime(2025, 1, 15, hour, 0, tzinfo=timezone.utc) + timedelta(days=days)


def test_group_by_priority_omits_empty_groups_in_fixed_order() -> None:
    tasks = [
        make_entity(title="l", priority=Priority.LOW),
        make_entity(title="h", priority=Priority.HIGH),
        make_entity(title="n"),
    ]
    groups = group_tasks(tasks, DisplayConfig(group_by=GroupBy.PRIORITY), T0)

    assert [g.id for g in groups] == ["high", "low", "none"]
    assert [g.label for g in groups] == ["High Priority", "Low Priority", "No Priority"]


def test_group_by_date_buckets_relative_to_now() -> None:
    tasks = [
        make_entity(title="none"),
        make_entity(title="later", due_at=_due(5)),
        make_entity(title="tomorrow", due_at=_due(1)),
        make_entity(title="today-earlier", due_at=_due(0, hour=8)),
        make_entity(title="yesterday", due_at=_due(-1)),
    ]
    groups = group_tasks(tasks, DisplayConfig(group_by=GroupBy.DATE), T0)

    assert [g.id for g in groups] == ["overdue", "today", "tomorrow", "upcoming", "noDate"]
    assert groups[1].tasks[0].title == "today-earlier"


def test_ungrouped_view_is_single_group() -> None:
    groups = group_tasks([], DisplayConfig(), T0)
    assert len(groups) == 1
    assert groups[0].id == "all"
    assert groups[0].label == "All Tasks"
    assert groups[0].tasks == []


def test_date_sort_keeps_undated_last_in_both_directions() -> None:
    tasks = [
        make_entity(title="undated"),
        make_entity(title="late", due_at=_due(3)),
        make_entity(title="early", due_at=_due(1)),
    ]
    asc = sort_tasks(tasks, DisplayConfig(sort_by=SortBy.DATE, sort_order=SortOrder.ASC))
    desc = sort_tasks(tasks, DisplayConfig(sort_by=SortBy.DATE, sort_order=SortOrder.DESC))

    assert [t.title for t in asc] == ["early", "late", "undated"]
    assert [t.title for t in desc] == ["late", "early", "undated"]


def test_priority_and_alphabetical_sorts() -> None:
    tasks = [
        make_entity(title="beta", priority=Priority.LOW),
        make_entity(title="Alpha", priority=Priority.HIGH),
        make_entity(title="gamma", priority=Priority.MEDIUM),
    ]
    by_prio = sort_tasks(tasks, DisplayConfig(sort_by=SortBy.PRIORITY))
    by_name = sort_tasks(tasks, DisplayConfig(sort_by=SortBy.ALPHABETICAL, sort_order=SortOrder.DESC))

    assert [t.title for t in by_prio] == ["Alpha", "gamma", "beta"]
    assert [t.title for t in by_name] == ["gamma", "beta", "Alpha"]


def test_tag_filter_requires_every_tag() -> None:
    both = make_entity(title="both", tags=["work", "urgent"])
    one = make_entity(title="one", tags=["work"])
    result = apply_filters([both, one], FilterState(tags=["work", "urgent"]), T0)
    assert result == [both]


def test_status_list_and_due_filters() -> None:
    done = make_entity(title="done", is_completed=True, completed_at=T0)
    late = make_entity(title="late", due_at=_due(-2), list_id="l1")
    plain = make_entity(title="plain")

    tasks = [done, late, plain]
    assert apply_filters(tasks, FilterState(status=StatusFilter.COMPLETED), T0) == [done]
    assert apply_filters(tasks, FilterState(status=StatusFilter.OVERDUE), T0) == [late]
    assert apply_filters(tasks, FilterState(list_id="l1"), T0) == [late]
    assert apply_filters(tasks, FilterState(list_id="default"), T0) == [done, plain]
    assert apply_filters(tasks, FilterState(has_due_date=False), T0) == [done, plain]
    # status is ignored when the caller asks for it
    assert len(apply_filters(tasks, FilterState(status=StatusFilter.ACTIVE), T0, respect_status=False)) == 3


def test_filter_and_display_dicts_are_lenient() -> None:
    f = FilterState.from_dict({"priority": "weird", "status": "nope", "tags": ["A", "a"], "has_due_date": "yes"})
    assert f.priority == "all"
    assert f.status == StatusFilter.ALL
    assert f.tags == ["a"]
    assert f.has_due_date is None

    d = DisplayConfig().merged({"group_by": "date", "sort_by": "bogus", "extra": 1})
    assert d.group_by == GroupBy.DATE
    assert d.sort_by == SortBy.POSITION


def test_stats() -> None:
    tasks = [
        make_entity(accumulated_time=60_000, estimated_time=120_000, tags=["a"]),
        make_entity(is_completed=True, completed_at=T0, accumulated_time=30_000, tags=["a", "b"]),
        make_entity(due_at=_due(-1)),
        make_entity(),
    ]
    s = compute_stats(tasks, T0)

    assert s.total_tasks == 4
    assert s.completed_tasks == 1
    assert s.active_tasks == 3
    assert s.overdue_tasks == 1
    assert s.total_time_ms == 90_000
    assert s.estimated_time_ms == 120_000
    assert s.average_time_per_task == 22_500
    assert s.completion_rate == 25.0
    assert s.tag_counts == {"a": 2, "b": 1}


def test_stats_of_nothing() -> None:
    s = compute_stats([], T0)
    assert s.average_time_per_task == 0.0
    assert s.completion_rate == 0.0
