from __future__ import annotations

import datetime as dt
import enum
import logging
from typing import Union

from .utils import local_day, parse_time_string, to_local

logger = logging.getLogger(__name__)

TimeLike = Union[dt.datetime, dt.time]


class TrackingStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ON_LUNCH = "on_lunch"


def _time_of_day(now: TimeLike) -> dt.time:
    if isinstance(now, dt.datetime):
        if now.tzinfo is not None:
            now = to_local(now)
        return now.time().replace(microsecond=0, tzinfo=None)
    return now.replace(microsecond=0, tzinfo=None)


def is_within_tracking_hours(now: TimeLike, start: str, end: str) -> bool:
    """True iff ``start <= now <= end``; an unparsable bound never matches."""
    try:
        start_time = parse_time_string(start)
        end_time = parse_time_string(end)
    except ValueError as exc:
        logger.debug("Tracking window %r-%r is not usable: %s", start, end, exc)
        return False
    return start_time <= _time_of_day(now) <= end_time


def should_prompt_user(
    now: TimeLike,
    start: str,
    end: str,
    *,
    on_lunch: bool,
    jira_configured: bool,
) -> bool:
    if on_lunch:
        return False
    if not is_within_tracking_hours(now, start, end):
        return False
    return jira_configured


def evaluate_status(now: TimeLike, start: str, end: str, *, on_lunch: bool) -> TrackingStatus:
    if on_lunch:
        return TrackingStatus.ON_LUNCH
    if is_within_tracking_hours(now, start, end):
        return TrackingStatus.ACTIVE
    return TrackingStatus.INACTIVE


def is_end_of_day(now: dt.datetime, end: str, tolerance: dt.timedelta = dt.timedelta(minutes=1)) -> bool:
    """True while ``now`` lies in ``[end, end + tolerance]`` on its own calendar day.

    The status tick polls once per minute, so this is an approximation: a tick
    that is skipped (for example while the machine sleeps) misses the window.
    """
    try:
        end_time = parse_time_string(end)
    except ValueError:
        return False
    local_now = to_local(now) if now.tzinfo is not None else now
    boundary = dt.datetime.combine(local_day(now), end_time)
    current = local_now.replace(tzinfo=None, microsecond=0)
    return boundary <= current <= boundary + tolerance


__all__ = [
    "TrackingStatus",
    "is_within_tracking_hours",
    "should_prompt_user",
    "evaluate_status",
    "is_end_of_day",
]
