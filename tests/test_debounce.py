# tests/test_debounce.py

from __future__ import annotations

import asyncio
import logging

import pytest

from chronos_tasks.core.debounce import Debouncer


def test_without_loop_call_stays_pending_until_flush() -> None:
    calls = []
    d = Debouncer(0.01, lambda: calls.append(1))

    d.schedule()
    d.schedule()
    assert d.pending
    assert calls == []

    assert d.flush() is None
    assert calls == [1]
    assert not d.pending
    # nothing pending: flush is a no-op
    d.flush()
    assert calls == [1]


def test_cancel_drops_pending_call() -> None:
    calls = []
    d = Debouncer(0.01, lambda: calls.append(1))
    d.schedule()
    d.cancel()
    d.flush()
    assert calls == []


def test_closed_debouncer_ignores_schedule() -> None:
    calls = []
    d = Debouncer(0.01, lambda: calls.append(1))
    d.close()
    d.schedule()
    assert not d.pending


@pytest.mark.asyncio
async def test_burst_fires_once_after_quiet_period() -> None:
    calls = []
    d = Debouncer(0.05, lambda: calls.append(1))

    for _ in range(5):
        d.schedule()
        await asyncio.sleep(0.005)
    assert calls == []

    await asyncio.sleep(0.15)
    assert calls == [1]
    assert not d.pending


@pytest.mark.asyncio
async def test_coroutine_callback_is_run_as_task() -> None:
    done = asyncio.Event()

    async def work() -> None:
        done.set()

    d = Debouncer(0.0, work)
    d.schedule()
    await asyncio.wait_for(done.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_flush_returns_awaitable_for_coroutine_callback() -> None:
    calls = []

    async def work() -> str:
        calls.append(1)
        return "ok"

    d = Debouncer(10.0, work)
    d.schedule()
    awaitable = d.flush()
    assert awaitable is not None
    assert await awaitable == "ok"
    assert calls == [1]


@pytest.mark.asyncio
async def test_failing_callback_is_logged_not_raised(caplog) -> None:
    def boom() -> None:
        raise RuntimeError("nope")

    d = Debouncer(0.0, boom, name="boom")
    with caplog.at_level(logging.ERROR, logger="chronos_tasks.core.debounce"):
        d.schedule()
        await asyncio.sleep(0.02)

    assert "Debounced callback failed name=boom" in caplog.text
