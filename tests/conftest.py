# tests/conftest.py

from __future__ import annotations

import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from chronos_tasks.cli.bootstrap import create_initial_state
from chronos_tasks.core.notifications import NotificationBus
from chronos_tasks.core.state import AppState
from chronos_tasks.storage.local_store import LocalStore
from chronos_tasks.tasks.collection import TaskCollection
from fakes import FakeClock, FakeTicker, NotificationRecorder, local_timezone


@pytest.fixture(autouse=True)
def _utc_local_time():
    """Recurrence and date buckets read the local zone; pin it to UTC."""
    if not hasattr(time, "tzset"):
        yield
        return
    with local_timezone("UTC0"):
        yield


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="chronos-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        db_path=tmp_path / "data" / "chronos.sqlite3",
        owner_id=None,
        remote_mode="memory",
        save_debounce_seconds=0.5,
        sync_debounce_seconds=60.0,
        timer_tick_seconds=1.0,
        undo_max_size=20,
        undo_ttl_seconds=30.0,
        title_max_length=200,
        console_enabled=False,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def ticker() -> FakeTicker:
    return FakeTicker()


@pytest.fixture()
def store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "chronos.sqlite3")


@pytest.fixture()
def bus() -> NotificationBus:
    return NotificationBus()


@pytest.fixture()
def recorder(bus: NotificationBus) -> NotificationRecorder:
    rec = NotificationRecorder()
    bus.subscribe(rec)
    return rec


@pytest.fixture()
def collection(store: LocalStore, bus: NotificationBus, clock: FakeClock, ticker: FakeTicker):
    """
    Collection over a real SQLite store with fake clocks.

    The sync debounce is long so that live-change tests control exactly when
    a push happens.
    """
    col = TaskCollection(
        store,
        bus=bus,
        clock=clock,
        save_debounce_seconds=0.01,
        sync_debounce_seconds=60.0,
        undo_clock=ticker,
    )
    yield col
    col.close()


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState from the real composition root.

    NOTE: We keep the real SQLite store and the in-memory remote here because
    the command layer is only a thin shell over them.
    """
    app = create_initial_state(settings=settings)
    yield app
    app.close()
