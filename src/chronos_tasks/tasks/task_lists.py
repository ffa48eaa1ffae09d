# src/chronos_tasks/tasks/task_lists.py

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..core.timeutil import format_dt, local_now, parse_dt

logger = logging.getLogger(__name__)

DEFAULT_LIST_ID = "default"
DEFAULT_LIST_TITLE = "My Tasks"
DEFAULT_LIST_ICON = "ListTodo"


@dataclass(slots=True)
class TaskList:
    id: str
    title: str
    created_at: datetime
    icon: str | None = None
    is_default: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "icon": self.icon,
            "is_default": self.is_default,
            "created_at": format_dt(self.created_at),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> TaskList | None:
        if not isinstance(raw, dict):
            return None
        lid = raw.get("id")
        title = raw.get("title")
        if not isinstance(lid, str) or not lid or not isinstance(title, str) or not title.strip():
            return None
        try:
            created = parse_dt(raw.get("created_at")) or local_now()
        except ValueError:
            created = local_now()
        icon = raw.get("icon")
        return cls(
            id=lid,
            title=title.strip(),
            created_at=created,
            icon=icon if isinstance(icon, str) else None,
            is_default=bool(raw.get("is_default", False)) or lid == DEFAULT_LIST_ID,
        )


class TaskListRegistry:
    """
    Owning lists for tasks.

    The default list always exists; it can be neither removed nor renamed.
    Tasks with list_id=None belong to the default list.
    """

    def __init__(self, lists: Iterable[TaskList] = ()) -> None:
        self._lists: list[TaskList] = []
        seen: set[str] = set()
        for item in lists:
            if item.id in seen:
                continue
            seen.add(item.id)
            self._lists.append(item)
        if DEFAULT_LIST_ID not in seen:
            self._lists.insert(
                0,
                TaskList(
                    id=DEFAULT_LIST_ID,
                    title=DEFAULT_LIST_TITLE,
                    icon=DEFAULT_LIST_ICON,
                    is_default=True,
                    created_at=local_now(),
                ),
            )

    @classmethod
    def from_raw(cls, raw: Any) -> TaskListRegistry:
        items: list[TaskList] = []
        if isinstance(raw, list):
            for rec in raw:
                tl = TaskList.from_dict(rec)
                if tl is None:
                    logger.debug("Skipping malformed list record: %r", rec)
                    continue
                items.append(tl)
        return cls(items)

    @property
    def lists(self) -> tuple[TaskList, ...]:
        return tuple(self._lists)

    def get(self, list_id: str) -> TaskList | None:
        return next((tl for tl in self._lists if tl.id == list_id), None)

    def add(self, title: str, icon: str | None = None) -> TaskList | None:
        title = (title or "").strip()
        if not title:
            return None
        tl = TaskList(id=str(uuid.uuid4()), title=title, icon=icon, created_at=local_now())
        self._lists.append(tl)
        logger.info("List added id=%s title=%r", tl.id, tl.title)
        return tl

    def remove(self, list_id: str) -> bool:
        tl = self.get(list_id)
        if tl is None or tl.is_default:
            return False
        self._lists = [x for x in self._lists if x.id != list_id]
        logger.info("List removed id=%s", list_id)
        return True

    def rename(self, list_id: str, title: str, icon: str | None = None) -> bool:
        tl = self.get(list_id)
        title = (title or "").strip()
        if tl is None or tl.is_default or not title:
            return False
        tl.title = title
        if icon is not None:
            tl.icon = icon
        return True

    def to_raw(self) -> list[dict[str, Any]]:
        return [tl.to_dict() for tl in self._lists]
