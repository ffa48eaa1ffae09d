# src/chronos_tasks/core/debounce.py

from __future__ import annotations

"""
Debounce utility.

Each schedule() cancels the previous pending call and re-arms the timer, so a
burst of calls produces exactly one callback after `delay_seconds` of quiet.

The timer is a loop.call_later handle on the running asyncio loop. When no loop
is running (plain synchronous use, unit tests) the call stays pending until
flush() or until the next schedule() made from inside a loop.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class Debouncer:
    def __init__(
        self,
        delay_seconds: float,
        callback: Callable[[], Any],
        *,
        name: str = "debounce",
    ) -> None:
        self._delay = max(0.0, float(delay_seconds))
        self._callback = callback
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._pending = False
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def delay_seconds(self) -> float:
        return self._delay

    def schedule(self) -> None:
        if self._closed:
            return
        self._cancel_handle()
        self._pending = True

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        self._cancel_handle()
        self._pending = False

    def flush(self) -> Awaitable[Any] | None:
        """
        Run the pending callback right now (if any).

        Returns the awaitable when the callback is a coroutine function, so async
        callers can `await` it; synchronous callbacks return None.
        """
        self._cancel_handle()
        if not self._pending:
            return None
        self._pending = False
        result = self._callback()
        if inspect.isawaitable(result):
            return result
        return None

    def close(self) -> None:
        """Cancel the timer and any in-flight async callback."""
        self._closed = True
        self.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    # ---- internals ----

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if not self._pending:
            return
        self._pending = False

        try:
            result = self._callback()
        except Exception:
            logger.exception("Debounced callback failed name=%s", self._name)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Debounced coroutine failed name=%s",
                self._name,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
