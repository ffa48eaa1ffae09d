# src/chronos_tasks/sync/sync_coordinator.py

from __future__ import annotations

"""
Remote reconciliation for one owner identity.

States: DETACHED -> SYNCING -> IDLE (-> SYNCING on the next request).

Conflict policy:
- a dirty local entity always wins until its push is acknowledged
- a clean local entity always accepts the remote version
There is no field-level merge.

perform_sync():
- pull: remote rows overwrite clean entities; unknown rows are inserted;
  previously synced entities missing remotely are removed locally
- push: every dirty entity independently (create / update / delete)
A sync requested while one is running is coalesced into a single re-run.
"""

import asyncio
import logging
import time
from enum import StrEnum

from ..core.errors import LocalStoreError
from ..core.notifications import NotificationKind
from ..core.ports import ChangeEvent, ChangeKind, KeyValueStore, RemoteStore, TaskRow, Unsubscribe
from ..tasks.collection import TaskCollection
from ..tasks.task_models import TaskEntity

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    DETACHED = "detached"
    SYNCING = "syncing"
    IDLE = "idle"


class SyncCoordinator:
    def __init__(
        self,
        collection: TaskCollection,
        remote: RemoteStore,
        *,
        store: KeyValueStore | None = None,
    ) -> None:
        self._collection = collection
        self._remote = remote
        self._store = store
        self._bus = collection.bus

        self._owner_id: str | None = None
        self._state = SyncState.DETACHED
        self._unsubscribe: Unsubscribe | None = None
        self._in_flight: asyncio.Future[bool] | None = None
        self._rerun = False
        # task_id -> entity revision at push start
        self._pushing: dict[str, int] = {}
        self._last_error: str | None = None
        self._last_sync_at: float = self._load_last_sync()

        collection.bind_sync(self.request_sync, state=lambda: self._state.value, teardown=self.detach)

    # ---- public state ----

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_sync_at(self) -> float:
        return self._last_sync_at

    # ---- lifecycle ----

    async def attach(self, owner_id: str) -> bool:
        """
        Attach an owner: stamp it on every entity, save, run one full sync,
        then open the live subscription (any previous one is torn down first).
        """
        owner_id = (owner_id or "").strip()
        if not owner_id:
            raise ValueError("owner_id must not be empty")

        self._close_subscription()
        self._owner_id = owner_id
        self._state = SyncState.IDLE
        self._collection.stamp_owner(owner_id)
        self._collection.flush()
        logger.info("Sync attached owner=%s", owner_id)

        ok = await self.perform_sync()

        if self._owner_id == owner_id:
            self._close_subscription()
            self._unsubscribe = self._remote.subscribe(owner_id, self.handle_change)
        return ok

    def detach(self) -> None:
        if self._owner_id is None and self._unsubscribe is None:
            return
        self._close_subscription()
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.cancel()
        self._in_flight = None
        self._owner_id = None
        self._state = SyncState.DETACHED
        self._collection.stamp_owner(None)
        logger.info("Sync detached")

    def _close_subscription(self) -> None:
        if self._unsubscribe is None:
            return
        try:
            self._unsubscribe()
        except Exception:
            logger.exception("Unsubscribe failed")
        self._unsubscribe = None

    # ---- sync ----

    def request_sync(self):
        """Debouncer entry point; returns the coroutine to schedule."""
        return self.perform_sync()

    async def force_sync(self) -> bool:
        return await self.perform_sync()

    async def perform_sync(self) -> bool:
        if self._owner_id is None:
            return False
        if self._in_flight is not None and not self._in_flight.done():
            self._rerun = True
            return await self._in_flight
        self._in_flight = asyncio.ensure_future(self._sync_loop())
        return await self._in_flight

    async def _sync_loop(self) -> bool:
        ok = True
        while True:
            self._rerun = False
            ok = await self._sync_once()
            if not self._rerun or self._owner_id is None:
                return ok
            logger.debug("Coalesced sync re-run")

    async def _sync_once(self) -> bool:
        owner_id = self._owner_id
        if owner_id is None:
            return False
        self._state = SyncState.SYNCING

        pulled = True
        try:
            rows = await self._remote.fetch_tasks(owner_id)
        except Exception as e:
            logger.exception("Pull failed owner=%s", owner_id)
            self._last_error = str(e) or type(e).__name__
            self._bus.error(NotificationKind.SYNC_FAILED, f"Sync failed: {self._last_error}")
            pulled = False
            rows = []

        if self._owner_id != owner_id:
            logger.info("Owner changed during sync; dropping results")
            return False

        if pulled:
            self._merge_pull(rows)

        failures = await self._push_dirty()

        if self._owner_id == owner_id:
            self._state = SyncState.IDLE
        self._collection.commit_sync_result()

        ok = pulled and failures == 0
        if ok:
            self._last_error = None
            self._last_sync_at = time.time()
            self._save_last_sync()
        logger.info("Sync done owner=%s ok=%s failures=%d", owner_id, ok, failures)
        return ok

    def _load_last_sync(self) -> float:
        if self._store is None:
            return 0.0
        try:
            return self._store.load_last_sync()
        except LocalStoreError:
            logger.exception("Loading last sync time failed")
            return 0.0

    def _save_last_sync(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save_last_sync(self._last_sync_at)
        except LocalStoreError:
            logger.exception("Saving last sync time failed")

    def _merge_pull(self, rows: list[TaskRow]) -> None:
        col = self._collection
        remote_ids: set[str] = set()

        for row in rows:
            rid = row.get("id")
            if not isinstance(rid, str) or not rid:
                logger.debug("Skipping remote row without id")
                continue
            remote_ids.add(rid)

            entity = col.find_entity(rid)
            if entity is None:
                col.insert_remote(row)
            elif entity.dirty or entity.deleted:
                continue
            else:
                col.apply_remote_row(entity, row)
                entity.mark_synced()

        for entity in list(col.entities()):
            if entity.id in remote_ids or entity.new:
                continue
            if entity.deleted:
                col.purge(entity.id)
                continue
            if entity.dirty:
                logger.warning("Conflict: task %s edited locally but deleted remotely; removing", entity.id)
            col.purge(entity.id)
            logger.info("Remote deletion applied task_id=%s", entity.id)

    async def _push_dirty(self) -> int:
        dirty = [e for e in self._collection.entities() if e.dirty]
        if not dirty:
            return 0

        results = await asyncio.gather(*(self._push_one(e) for e in dirty), return_exceptions=True)

        failures = 0
        for entity, result in zip(dirty, results):
            if not isinstance(result, BaseException):
                continue
            failures += 1
            entity.sync_error = str(result) or type(result).__name__
            logger.error(
                "Push failed task_id=%s",
                entity.id,
                exc_info=(type(result), result, result.__traceback__),
            )

        if failures:
            self._last_error = f"{failures} task(s) failed to sync"
            self._bus.error(NotificationKind.SYNC_FAILED, f"Sync failed for {failures} task(s)")
        return failures

    async def _push_one(self, entity: TaskEntity) -> None:
        col = self._collection
        revision = entity.revision
        self._pushing[entity.id] = revision
        try:
            if entity.deleted:
                if not entity.new:
                    await self._remote.delete_task(entity.id)
                current = col.find_entity(entity.id)
                if current is entity:
                    col.purge(entity.id)
                elif current is not None:
                    # restored by undo while the delete was in flight
                    current.new = True
                return

            if entity.new:
                await self._remote.create_task(entity.to_remote())
                entity.new = False
            else:
                await self._remote.update_task(entity.id, entity.to_remote())

            if entity.revision == revision:
                entity.mark_synced()
            else:
                entity.sync_error = None
        finally:
            self._pushing.pop(entity.id, None)

    # ---- live changes ----

    def handle_change(self, event: ChangeEvent) -> None:
        if self._owner_id is None:
            return
        task_id = event.task_id
        if task_id is None:
            logger.debug("Ignoring change without id kind=%s", event.kind)
            return

        col = self._collection
        entity = col.find_entity(task_id)

        if event.kind == ChangeKind.DELETE:
            if entity is not None:
                col.purge(task_id)
                logger.info("Remote delete task_id=%s", task_id)

        elif event.kind == ChangeKind.INSERT and entity is not None and entity.new:
            # our own creation echoed back
            entity.new = False
            if not entity.deleted and self._pushing.get(task_id, entity.revision) == entity.revision:
                entity.dirty = False
                entity.sync_error = None

        elif event.new is None:
            return

        elif entity is None:
            col.insert_remote(event.new)

        elif entity.dirty or entity.deleted:
            logger.debug("Ignoring remote %s for locally modified task_id=%s", event.kind, task_id)
            return

        else:
            col.apply_remote_row(entity, event.new)
            entity.mark_synced()

        col.commit_sync_result()
