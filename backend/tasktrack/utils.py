from __future__ import annotations

import datetime as dt
import re
from typing import Optional, Tuple

from zoneinfo import ZoneInfo

from .config import settings

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

_TIME_PATTERN = re.compile(
    r"^\s*(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))(?::(?P<second>\d{2}))?\s*(?P<meridiem>[AaPp][Mm])?\s*$"
)


def local_now() -> dt.datetime:
    return dt.datetime.now(LOCAL_TZ)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(UTC)


def from_db_datetime(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_local(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(LOCAL_TZ)


def local_day(value: dt.datetime) -> dt.date:
    """Calendar date of ``value`` in the configured timezone (naive values count as local)."""
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(LOCAL_TZ).date()


def day_bounds(day: dt.date) -> Tuple[dt.datetime, dt.datetime]:
    start_local = dt.datetime.combine(day, dt.time.min, tzinfo=LOCAL_TZ)
    end_local = dt.datetime.combine(day + dt.timedelta(days=1), dt.time.min, tzinfo=LOCAL_TZ)
    return start_local.astimezone(UTC), end_local.astimezone(UTC)


def week_bounds(day: dt.date) -> Tuple[dt.date, dt.date]:
    """Monday and Sunday of the week containing ``day``."""
    monday = day - dt.timedelta(days=day.weekday())
    return monday, monday + dt.timedelta(days=6)


def parse_time_string(value: str) -> dt.time:
    """Parse ``09:00``, ``9:00``, ``17:30:15`` or ``5:30 PM`` into a time of day."""
    if not isinstance(value, str):
        raise ValueError(f"Invalid time format: {value!r}")
    match = _TIME_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid time format: {value!r}")
    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    second = int(match.group("second") or 0)
    meridiem = match.group("meridiem")
    if meridiem:
        if not 1 <= hour <= 12:
            raise ValueError(f"Invalid time format: {value!r}")
        hour = hour % 12
        if meridiem.lower() == "pm":
            hour += 12
    try:
        return dt.time(hour, minute, second)
    except ValueError as exc:
        raise ValueError(f"Invalid time format: {value!r}") from exc


def format_duration(delta: dt.timedelta) -> str:
    total_minutes = int(delta.total_seconds() // 60)
    hours, minutes = divmod(max(total_minutes, 0), 60)
    return f"{hours:02d}:{minutes:02d}"


def duration_minutes(delta: dt.timedelta) -> int:
    return int(round(delta.total_seconds() / 60))
