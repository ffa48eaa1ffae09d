# src/chronos_tasks/core/timeutil.py

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Timezone-aware "now" in the machine's local zone."""
    return datetime.now().astimezone()


def parse_dt(value: object) -> datetime | None:
    """
    Parse an ISO-8601 timestamp (or pass a datetime through).

    - None -> None
    - naive values are interpreted as local time
    - anything unparsable raises ValueError
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.astimezone()
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("empty timestamp")
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
        return dt if dt.tzinfo is not None else dt.astimezone()
    raise ValueError(f"not a timestamp: {value!r}")


def format_dt(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def elapsed_ms(start: datetime, now: datetime) -> int:
    """Milliseconds from start to now, clamped at zero (clock skew)."""
    delta = (now - start).total_seconds() * 1000.0
    return max(0, int(delta))


def local_date(value: datetime, reference: datetime) -> date:
    """Calendar date of `value` seen from the timezone of `reference`."""
    if reference.tzinfo is not None:
        value = value.astimezone(reference.tzinfo)
    return value.date()


def is_overdue(due: datetime, now: datetime) -> bool:
    """Due date strictly before today (time of day ignored)."""
    return local_date(due, now) < now.date()


def is_today(due: datetime, now: datetime) -> bool:
    return local_date(due, now) == now.date()


def is_tomorrow(due: datetime, now: datetime) -> bool:
    return local_date(due, now) == now.date() + timedelta(days=1)


def sunday_weekday(value: datetime | date) -> int:
    """Weekday with Sunday = 0 ... Saturday = 6."""
    return (value.weekday() + 1) % 7


# ---- wall-clock arithmetic ----


def wall_clock(value: datetime) -> datetime:
    """
    Naive local wall-clock time of `value`.

    A zoneinfo zone is kept as the reference; fixed offsets (what
    local_now() and parse_dt() produce) are read in the machine's local zone.
    """
    if isinstance(value.tzinfo, ZoneInfo):
        return value.replace(tzinfo=None)
    return value.astimezone().replace(tzinfo=None)


def from_wall_clock(wall: datetime, like: datetime) -> datetime:
    """Attach the zone `like` is read in to a naive wall-clock time."""
    if isinstance(like.tzinfo, ZoneInfo):
        return wall.replace(tzinfo=like.tzinfo)
    return wall.astimezone()


def add_local_days(value: datetime, days: int) -> datetime:
    """Move by calendar days keeping the wall-clock time across DST changes."""
    return from_wall_clock(wall_clock(value) + timedelta(days=days), value)
