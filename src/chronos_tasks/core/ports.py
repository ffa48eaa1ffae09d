# src/chronos_tasks/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the task data layer.

The collection and the sync coordinator depend on Protocols instead of concrete
implementations. This keeps the remote backend and the local storage swappable
and makes testing easier.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

TaskRow = dict[str, Any]
# Remote-shape task record: durable fields only, keyed like the remote table
# ("id", "title", "is_completed", "accumulated_time", ...). No "_dirty"-style keys.


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One live change notification delivered by a remote subscription."""

    kind: ChangeKind
    new: TaskRow | None = None
    old: TaskRow | None = None

    @property
    def task_id(self) -> str | None:
        rec = self.new if self.new is not None else self.old
        if not rec:
            return None
        raw = rec.get("id")
        return str(raw) if raw is not None else None


ChangeCallback = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class RemoteStore(Protocol):
    """
    Remote task table, keyed by id and queryable by owner identity.

    Every call may raise RemoteStoreError. There is no timeout contract;
    callers never block on these (they are awaited from background tasks).
    """

    async def fetch_tasks(self, owner_id: str) -> list[TaskRow]: ...

    async def create_task(self, row: TaskRow) -> TaskRow: ...

    async def update_task(self, task_id: str, row: TaskRow) -> TaskRow: ...

    async def delete_task(self, task_id: str) -> None: ...

    def subscribe(self, owner_id: str, callback: ChangeCallback) -> Unsubscribe: ...


class KeyValueStore(Protocol):
    """
    Local durable storage: JSON-compatible values under string keys, plus the
    task snapshot and last-sync helpers the collection and sync layer use.
    """

    def load(self, key: str, default: Any = None) -> Any: ...

    def save(self, key: str, value: Any) -> None: ...

    def load_tasks(self) -> list[dict[str, Any]]: ...

    def save_tasks(self, records: list[dict[str, Any]]) -> None: ...

    def load_last_sync(self) -> float: ...

    def save_last_sync(self, ts: float) -> None: ...
