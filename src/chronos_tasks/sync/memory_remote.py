# src/chronos_tasks/sync/memory_remote.py

from __future__ import annotations

"""
In-process RemoteStore.

Used for offline demos (CHRONOS_REMOTE_MODE=memory) and tests. It behaves like
the hosted task table as far as the sync layer can tell:
- rows are keyed by id and filtered by user_id
- every write is broadcast to the owner's subscribers (our own writes too)
- events are delivered on the next loop iteration, not inside the call
"""

import asyncio
import copy
import logging
from collections.abc import Iterable

from ..core.errors import RemoteStoreError
from ..core.ports import ChangeCallback, ChangeEvent, ChangeKind, TaskRow, Unsubscribe

logger = logging.getLogger(__name__)


class InMemoryRemoteStore:
    def __init__(self, rows: Iterable[TaskRow] = ()) -> None:
        self._rows: dict[str, TaskRow] = {}
        self._subscribers: dict[str, list[ChangeCallback]] = {}
        for row in rows:
            self._rows[str(row["id"])] = copy.deepcopy(dict(row))

    # ---- inspection helpers ----

    def get(self, task_id: str) -> TaskRow | None:
        row = self._rows.get(task_id)
        return copy.deepcopy(row) if row is not None else None

    def __len__(self) -> int:
        return len(self._rows)

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._subscribers.get(owner_id, []))

    # ---- RemoteStore ----

    async def fetch_tasks(self, owner_id: str) -> list[TaskRow]:
        rows = [copy.deepcopy(r) for r in self._rows.values() if r.get("user_id") == owner_id]
        rows.sort(key=lambda r: r.get("position") or 0)
        return rows

    async def create_task(self, row: TaskRow) -> TaskRow:
        task_id = str(row.get("id") or "")
        if not task_id:
            raise RemoteStoreError("row without id")
        if task_id in self._rows:
            raise RemoteStoreError("duplicate id", task_id=task_id)
        stored = copy.deepcopy(dict(row))
        self._rows[task_id] = stored
        self._emit(ChangeEvent(ChangeKind.INSERT, new=copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def update_task(self, task_id: str, row: TaskRow) -> TaskRow:
        old = self._rows.get(task_id)
        if old is None:
            raise RemoteStoreError("no such task", task_id=task_id)
        stored = {**old, **copy.deepcopy(dict(row)), "id": task_id}
        self._rows[task_id] = stored
        self._emit(ChangeEvent(ChangeKind.UPDATE, new=copy.deepcopy(stored), old=copy.deepcopy(old)))
        return copy.deepcopy(stored)

    async def delete_task(self, task_id: str) -> None:
        old = self._rows.pop(task_id, None)
        if old is not None:
            self._emit(ChangeEvent(ChangeKind.DELETE, old=copy.deepcopy(old)))

    def subscribe(self, owner_id: str, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers.setdefault(owner_id, []).append(callback)
        logger.debug("Subscribed owner=%s n=%d", owner_id, self.subscriber_count(owner_id))

        def _unsubscribe() -> None:
            callbacks = self._subscribers.get(owner_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return _unsubscribe

    # ---- internals ----

    def _emit(self, event: ChangeEvent) -> None:
        rec = event.new if event.new is not None else event.old
        owner_id = (rec or {}).get("user_id")
        callbacks = list(self._subscribers.get(owner_id, [])) if isinstance(owner_id, str) else []
        if not callbacks:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for cb in callbacks:
            if loop is not None:
                loop.call_soon(self._deliver, cb, event)
            else:
                self._deliver(cb, event)

    @staticmethod
    def _deliver(callback: ChangeCallback, event: ChangeEvent) -> None:
        try:
            callback(event)
        except Exception:
            logger.exception("Change subscriber failed kind=%s", event.kind.value)
