# src/chronos_tasks/tasks/timer.py

from __future__ import annotations

"""
Timer coordination across the collection.

At most one entity runs at a time. Starting a timer pauses whichever entity is
running *before* the target starts, so there is never a moment with two
runners.

The coordinator reads the collection's own list through `get_items` on every
call; it never keeps a copy.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from ..core.timeutil import Clock, local_now
from .task_models import TaskEntity

logger = logging.getLogger(__name__)

TickCallback = Callable[[TaskEntity], None]


class TimerCoordinator:
    def __init__(self, get_items: Callable[[], list[TaskEntity]], *, clock: Clock = local_now) -> None:
        self._get_items = get_items
        self._clock = clock

    def _find(self, task_id: str) -> TaskEntity | None:
        for e in self._get_items():
            if e.id == task_id and not e.deleted:
                return e
        return None

    def running_entity(self) -> TaskEntity | None:
        for e in self._get_items():
            if e.is_running and not e.deleted:
                return e
        return None

    def start(self, task_id: str, now: datetime | None = None) -> list[TaskEntity]:
        """
        Start the timer on `task_id`. Returns every entity whose timer changed
        (paused runner first, then the target); empty when nothing happened.
        """
        target = self._find(task_id)
        if target is None or target.is_completed or target.is_running:
            return []
        now = now or self._clock()

        changed: list[TaskEntity] = []
        for e in self._get_items():
            if e is not target and e.is_running and e.pause_timer(now):
                changed.append(e)

        if target.start_timer(now):
            changed.append(target)
        logger.debug("Timer start task_id=%s paused=%d", task_id, len(changed) - 1)
        return changed

    def pause(self, task_id: str, now: datetime | None = None) -> bool:
        target = self._find(task_id)
        if target is None:
            return False
        return target.pause_timer(now or self._clock())

    def toggle(self, task_id: str, now: datetime | None = None) -> list[TaskEntity]:
        target = self._find(task_id)
        if target is None:
            return []
        if target.is_running:
            return [target] if self.pause(task_id, now) else []
        return self.start(task_id, now)

    def pause_all(self, now: datetime | None = None) -> list[TaskEntity]:
        now = now or self._clock()
        return [e for e in self._get_items() if e.is_running and e.pause_timer(now)]

    def reset(self, task_id: str, now: datetime | None = None) -> bool:
        target = self._find(task_id)
        if target is None:
            return False
        target.reset_timer(now or self._clock())
        return True

    def tick(self, now: datetime | None = None) -> TaskEntity | None:
        """Recompute the running entity's display value. No persistence."""
        runner = self.running_entity()
        if runner is not None:
            runner.tick(now or self._clock())
        return runner


async def run_timer_loop(
        coordinator: TimerCoordinator,
        *,
        interval_seconds: float = 1.0,
        on_tick: TickCallback | None = None,
) -> None:
    """
    Tick loop for the running timer.

    Every interval_seconds:
    - recompute the running entity's displayed elapsed time
    - hand it to on_tick (UI refresh hook)

    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.05, float(interval_seconds))

    while True:
        try:
            runner = coordinator.tick()
            if runner is not None and on_tick is not None:
                on_tick(runner)
        except Exception:
            logger.exception("Timer tick failed")

        await asyncio.sleep(sleep_s)
