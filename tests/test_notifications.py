# tests/test_notifications.py

from __future__ import annotations

from chronos_tasks.core.notifications import (
    Notification,
    NotificationBus,
    NotificationKind,
    NotificationLevel,
)
from fakes import NotificationRecorder


def test_publish_reaches_every_listener_despite_failures() -> None:
    bus = NotificationBus()
    rec = NotificationRecorder()

    def broken(n: Notification) -> None:
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(rec)

    n = bus.info(NotificationKind.TASK_DELETED, 'Deleted "x"', undo_id="u-1")

    assert rec.items == [n]
    assert n.level == NotificationLevel.INFO
    assert n.undo_id == "u-1"


def test_unsubscribe_and_unique_ids() -> None:
    bus = NotificationBus()
    rec = NotificationRecorder()
    unsubscribe = bus.subscribe(rec)

    first = bus.success(NotificationKind.UNDO_APPLIED, "Task restored")
    unsubscribe()
    bus.error(NotificationKind.SYNC_FAILED, "Sync failed")

    assert rec.kinds == [NotificationKind.UNDO_APPLIED]
    assert first.level == NotificationLevel.SUCCESS
    assert Notification(NotificationKind.SYNC_FAILED, "a").id != Notification(NotificationKind.SYNC_FAILED, "b").id
