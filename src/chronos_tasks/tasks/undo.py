# src/chronos_tasks/tasks/undo.py

from __future__ import annotations

"""
Undo log.

Destructive operations push a plain data record (UndoAction) describing what
to put back. The owner of the data (TaskCollection) registers one dispatcher
that maps each UndoKind to its compensation. Records hold no callables, so the
stack can be inspected, logged and serialized.

Semantics:
- push() prepends; the stack is trimmed to max_size (oldest dropped)
- undo() removes the entry first, then dispatches it (an action runs once)
- expire() drops entries older than ttl_seconds without running them
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 20
DEFAULT_TTL_SECONDS = 30.0


class UndoKind(StrEnum):
    DELETE_TASK = "delete_task"
    CLEAR_COMPLETED = "clear_completed"
    DELETE_TAG = "delete_tag"
    TIMER_TOGGLE = "timer_toggle"
    COMPLETE_TASK = "complete_task"


@dataclass(frozen=True, slots=True)
class UndoAction:
    kind: UndoKind
    payload: dict[str, Any]
    label: str
    created_at: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "label": self.label,
            "created_at": self.created_at,
            "payload": self.payload,
        }


UndoDispatcher = Callable[[UndoAction], None]


class UndoManager:
    def __init__(
        self,
        dispatcher: UndoDispatcher,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._dispatch = dispatcher
        self._max_size = max(1, int(max_size))
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._stack: list[UndoAction] = []

    @property
    def stack(self) -> tuple[UndoAction, ...]:
        """Most recent first."""
        return tuple(self._stack)

    @property
    def can_undo(self) -> bool:
        return bool(self._stack)

    @property
    def last_action(self) -> UndoAction | None:
        return self._stack[0] if self._stack else None

    def record(self, kind: UndoKind, payload: dict[str, Any], label: str) -> UndoAction:
        """Build an action stamped with the manager clock and push it."""
        action = UndoAction(kind=kind, payload=payload, label=label, created_at=self._clock())
        self.push(action)
        return action

    def push(self, action: UndoAction) -> None:
        self._stack.insert(0, action)
        if len(self._stack) > self._max_size:
            dropped = self._stack[self._max_size :]
            del self._stack[self._max_size :]
            logger.debug("Undo stack trimmed dropped=%d", len(dropped))

    def undo(self, action_id: str | None = None) -> bool:
        """
        Run the most recent action, or the one with `action_id`.

        Returns False when there is nothing to undo (or the id is unknown).
        """
        if not self._stack:
            return False

        if action_id is None:
            action = self._stack.pop(0)
        else:
            idx = next((i for i, a in enumerate(self._stack) if a.id == action_id), None)
            if idx is None:
                logger.debug("Undo id not found (expired?) id=%s", action_id)
                return False
            action = self._stack.pop(idx)

        logger.info("Undo kind=%s label=%s", action.kind.value, action.label)
        try:
            self._dispatch(action)
        except Exception:
            logger.exception("Undo dispatch failed kind=%s id=%s", action.kind.value, action.id)
            raise
        return True

    def expire(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        keep = [a for a in self._stack if now - a.created_at < self._ttl]
        expired = len(self._stack) - len(keep)
        if expired:
            self._stack = keep
            logger.debug("Undo entries expired n=%d", expired)
        return expired

    def clear(self) -> None:
        self._stack.clear()


async def run_undo_expiry_loop(manager: UndoManager, *, interval_seconds: float = 5.0) -> None:
    """
    Drop stale undo entries every interval_seconds.

    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.1, float(interval_seconds))

    while True:
        await asyncio.sleep(sleep_s)
        try:
            manager.expire()
        except Exception:
            logger.exception("Undo expiry failed")
