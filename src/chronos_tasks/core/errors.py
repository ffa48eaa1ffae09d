# src/chronos_tasks/core/errors.py

from __future__ import annotations


class ChronosError(Exception):
    """Base class for errors raised by the task data layer."""


class LocalStoreError(ChronosError):
    """Local persistence failed (read or write)."""


class RemoteStoreError(ChronosError):
    """
    A call to the remote store failed.

    `task_id` is set when the failure concerns a single row.
    """

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
