# src/chronos_tasks/tasks/recurrence.py

from __future__ import annotations

"""
Next-occurrence calculation for recurring tasks.

Weekdays are integers 0..6 with 0 = Sunday (first day of the week).
Days are counted on the local wall clock, so the time of day survives DST changes.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from ..core.timeutil import add_local_days, sunday_weekday, wall_clock

logger = logging.getLogger(__name__)

# "custom" is how older records spelled weekly-with-days.
_WEEKLY_KINDS = frozenset({"weekly", "custom"})


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    type: str
    days: tuple[int, ...] = ()
    interval: int = 1
    end_date: date | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> RecurrenceRule | None:
        """Lenient loader: bad parts are dropped, a missing type yields None."""
        if isinstance(raw, RecurrenceRule):
            return raw
        if not isinstance(raw, Mapping):
            return None

        kind = raw.get("type")
        if not isinstance(kind, str) or not kind.strip():
            return None

        days: list[int] = []
        raw_days = raw.get("days")
        if isinstance(raw_days, (list, tuple)):
            for d in raw_days:
                if isinstance(d, int) and not isinstance(d, bool) and 0 <= d <= 6 and d not in days:
                    days.append(d)

        interval = raw.get("interval", 1)
        if not isinstance(interval, int) or isinstance(interval, bool) or interval < 1:
            interval = 1

        end_date: date | None = None
        raw_end = raw.get("endDate", raw.get("end_date"))
        if isinstance(raw_end, datetime):
            end_date = raw_end.date()
        elif isinstance(raw_end, date):
            end_date = raw_end
        elif isinstance(raw_end, str) and raw_end.strip():
            try:
                end_date = date.fromisoformat(raw_end.strip()[:10])
            except ValueError:
                logger.debug("Ignoring malformed recurrence endDate=%r", raw_end)

        return cls(type=kind.strip(), days=tuple(sorted(days)), interval=interval, end_date=end_date)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "interval": self.interval}
        if self.days:
            out["days"] = list(self.days)
        if self.end_date is not None:
            out["endDate"] = self.end_date.isoformat()
        return out


def next_occurrence(
    rule: RecurrenceRule | Mapping[str, Any] | None,
    from_date: datetime,
) -> datetime | None:
    """
    Return the next occurrence strictly after `from_date`, or None when the rule
    produces no further occurrences (unknown kind, or past its end date).
    """
    if rule is None:
        return None
    if not isinstance(rule, RecurrenceRule):
        rule = RecurrenceRule.from_dict(rule)
        if rule is None:
            return None

    n = rule.interval if rule.interval >= 1 else 1

    if rule.type == "daily":
        nxt = add_local_days(from_date, n)
    elif rule.type in _WEEKLY_KINDS:
        if rule.days:
            days = sorted(set(rule.days))
            current = sunday_weekday(wall_clock(from_date))
            later = [d for d in days if d > current]
            if later:
                offset = later[0] - current
            else:
                # wrap to the first listed day, N weeks on
                offset = 7 * n - current + days[0]
            nxt = add_local_days(from_date, offset)
        else:
            nxt = add_local_days(from_date, 7 * n)
    else:
        return None

    if rule.end_date is not None and wall_clock(nxt).date() > rule.end_date:
        return None
    return nxt
