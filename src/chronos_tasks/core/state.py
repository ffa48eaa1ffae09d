# src/chronos_tasks/core/state.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..core.notifications import NotificationBus
from ..core.ports import RemoteStore
from ..storage.local_store import LocalStore
from ..sync.sync_coordinator import SyncCoordinator
from ..tasks.collection import TaskCollection

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppState:
    """
    Runtime state shared by connectors and commands.

    One TaskCollection per session; `close()` is the single teardown point.
    """

    settings: Any

    store: LocalStore
    bus: NotificationBus
    collection: TaskCollection
    remote: RemoteStore | None = None
    sync: SyncCoordinator | None = None

    def close(self) -> None:
        """Best-effort shutdown (no exceptions should escape)."""
        try:
            if self.sync is not None:
                self.sync.detach()
        except Exception:
            logger.exception("Sync detach failed.")

        try:
            self.collection.close()
        except Exception:
            logger.exception("Collection close failed.")

        try:
            self.store.close()
        except Exception:
            logger.debug("Store close failed.", exc_info=True)
