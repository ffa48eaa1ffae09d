# tests/test_timer.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from chronos_tasks.tasks.task_models import TaskEntity
from chronos_tasks.tasks.timer import TimerCoordinator, run_timer_loop
from fakes import T0, FakeClock, make_entity


def _coordinator(items: list[TaskEntity], clock: FakeClock) -> TimerCoordinator:
    return TimerCoordinator(lambda: items, clock=clock)


def test_start_pauses_the_runner_first(clock: FakeClock) -> None:
    a, b = make_entity(title="a"), make_entity(title="b")
    coord = _coordinator([a, b], clock)

    assert coord.start(a.id) == [a]
    clock.advance(seconds=60)
    changed = coord.start(b.id)

    assert changed == [a, b]
    assert not a.is_running
    assert a.accumulated_time == 60_000
    assert b.is_running
    assert coord.running_entity() is b


def test_at_most_one_runner_through_any_sequence(clock: FakeClock) -> None:
    items = [make_entity(title=str(i)) for i in range(4)]
    coord = _coordinator(items, clock)

    for step, idx in enumerate([0, 1, 1, 2, 3, 3, 0, 2, 1]):
        clock.advance(seconds=step + 1)
        coord.toggle(items[idx].id)
        assert sum(1 for e in items if e.is_running) <= 1


def test_start_ignores_completed_and_deleted(clock: FakeClock) -> None:
    done = make_entity(is_completed=True, completed_at=T0)
    gone = make_entity(deleted=True)
    coord = _coordinator([done, gone], clock)

    assert coord.start(done.id) == []
    assert coord.start(gone.id) == []
    assert coord.start("missing") == []


def test_pause_all_and_reset(clock: FakeClock) -> None:
    a = make_entity(accumulated_time=5_000)
    coord = _coordinator([a], clock)
    coord.start(a.id)
    clock.advance(seconds=2)

    assert coord.pause_all() == [a]
    assert a.accumulated_time == 7_000
    assert coord.pause_all() == []

    assert coord.reset(a.id)
    assert a.accumulated_time == 0


def test_tick_updates_display_only(clock: FakeClock) -> None:
    a = make_entity()
    coord = _coordinator([a], clock)
    coord.start(a.id)
    revision = a.revision
    clock.advance(seconds=3)

    assert coord.tick() is a
    assert a.displayed_elapsed_ms(clock()) == 3_000
    assert a.accumulated_time == 0
    assert a.revision == revision


@pytest.mark.asyncio
async def test_timer_loop_calls_on_tick_until_cancelled(clock: FakeClock) -> None:
    a = make_entity()
    coord = _coordinator([a], clock)
    coord.start(a.id)
    ticks: list[TaskEntity] = []

    runner = asyncio.create_task(run_timer_loop(coord, interval_seconds=0.05, on_tick=ticks.append))
    await asyncio.sleep(0.12)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert ticks and ticks[0] is a


@pytest.mark.asyncio
async def test_timer_loop_survives_callback_errors(clock: FakeClock) -> None:
    a = make_entity()
    coord = _coordinator([a], clock)
    coord.start(a.id)
    calls = {"n": 0}

    def on_tick(entity: TaskEntity) -> None:
        calls["n"] += 1
        raise RuntimeError("ui gone")

    runner = asyncio.create_task(run_timer_loop(coord, interval_seconds=0.05, on_tick=on_tick))
    await asyncio.sleep(0.13)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert calls["n"] >= 2


def test_display_value_with_backward_step(clock: FakeClock) -> None:
    a = make_entity()
    coord = _coordinator([a], clock)
    coord.start(a.id)
    clock.advance(seconds=10)
    coord.tick()
    clock.now = clock.now - timedelta(seconds=4)
    coord.tick()
    assert a.displayed_elapsed_ms(clock()) == 10_000
