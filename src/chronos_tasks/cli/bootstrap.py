# src/chronos_tasks/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (local store, collection,
  remote store, sync coordinator).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.notifications import NotificationBus
from ..core.ports import RemoteStore
from ..core.state import AppState
from ..storage.local_store import LocalStore
from ..sync.memory_remote import InMemoryRemoteStore
from ..sync.sync_coordinator import SyncCoordinator
from ..tasks.collection import TaskCollection

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_remote(settings) -> RemoteStore | None:
    mode = str(getattr(settings, "remote_mode", "none") or "none").lower()
    if mode == "memory":
        logger.info("Remote store: in-memory (offline demo)")
        return InMemoryRemoteStore()
    logger.info("Remote store: none (local only)")
    return None


def create_initial_state(*, settings=None, remote: RemoteStore | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings(). An explicit `remote` wins over
    settings.remote_mode.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = LocalStore(settings.db_path)
    bus = NotificationBus()
    collection = TaskCollection(
        store,
        bus=bus,
        save_debounce_seconds=settings.save_debounce_seconds,
        sync_debounce_seconds=settings.sync_debounce_seconds,
        undo_max_size=settings.undo_max_size,
        undo_ttl_seconds=settings.undo_ttl_seconds,
        title_max_length=settings.title_max_length,
    )

    if remote is None:
        remote = _build_remote(settings)
    sync = SyncCoordinator(collection, remote, store=store) if remote is not None else None

    return AppState(
        settings=settings,
        store=store,
        bus=bus,
        collection=collection,
        remote=remote,
        sync=sync,
    )
