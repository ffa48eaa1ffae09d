# src/chronos_tasks/core/notifications.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from itertools import count

logger = logging.getLogger(__name__)

_ids = count(1)


class NotificationKind(StrEnum):
    TASK_DELETED = "task_deleted"
    TASKS_CLEARED = "tasks_cleared"
    TAG_DELETED = "tag_deleted"
    RECURRENCE_CREATED = "recurrence_created"
    UNDO_APPLIED = "undo_applied"
    SYNC_FAILED = "sync_failed"
    PERSISTENCE_FAILED = "persistence_failed"


class NotificationLevel(StrEnum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notification:
    """
    Toast-style signal for the UI collaborator.

    `undo_id` is the id of the UndoAction the user can trigger from the toast
    (delete / batch clear / tag delete); pass it to TaskCollection.undo().
    """

    kind: NotificationKind
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    undo_id: str | None = None
    id: int = field(default_factory=lambda: next(_ids))


NotificationListener = Callable[[Notification], None]


class NotificationBus:
    """Fire-and-forget fan-out. A failing listener never affects the publisher."""

    def __init__(self) -> None:
        self._listeners: list[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, notification: Notification) -> None:
        logger.debug("notify kind=%s msg=%s", notification.kind.value, notification.message)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed kind=%s", notification.kind.value)

    def info(self, kind: NotificationKind, message: str, *, undo_id: str | None = None) -> Notification:
        n = Notification(kind=kind, message=message, level=NotificationLevel.INFO, undo_id=undo_id)
        self.publish(n)
        return n

    def success(self, kind: NotificationKind, message: str) -> Notification:
        n = Notification(kind=kind, message=message, level=NotificationLevel.SUCCESS)
        self.publish(n)
        return n

    def error(self, kind: NotificationKind, message: str) -> Notification:
        n = Notification(kind=kind, message=message, level=NotificationLevel.ERROR)
        self.publish(n)
        return n
