from __future__ import annotations

import datetime as dt

import pytest

from tasktrack.tracking import (
    TrackingStatus,
    evaluate_status,
    is_end_of_day,
    is_within_tracking_hours,
    should_prompt_user,
)
from tasktrack.utils import LOCAL_TZ, parse_time_string


@pytest.mark.parametrize(
    "moment, expected",
    [
        (dt.time(9, 0), True),
        (dt.time(17, 30), True),
        (dt.time(12, 0), True),
        (dt.time(8, 59), False),
        (dt.time(17, 31), False),
    ],
)
def test_tracking_hours_boundaries_are_inclusive(moment, expected):
    assert is_within_tracking_hours(moment, "09:00", "17:30") is expected


def test_tracking_hours_accept_aware_datetimes():
    inside = dt.datetime(2024, 3, 4, 9, 0, tzinfo=LOCAL_TZ)
    assert is_within_tracking_hours(inside, "09:00", "17:30")
    assert not is_within_tracking_hours(inside - dt.timedelta(minutes=1), "09:00", "17:30")


@pytest.mark.parametrize("start, end", [("nine", "17:30"), ("09:00", ""), ("25:00", "17:30"), ("09:00", "17:75")])
def test_unparsable_window_fails_closed(start, end):
    assert is_within_tracking_hours(dt.time(12, 0), start, end) is False
    assert should_prompt_user(dt.time(12, 0), start, end, on_lunch=False, jira_configured=True) is False


def test_lunch_blocks_prompt_regardless_of_hours():
    for moment in (dt.time(7, 0), dt.time(12, 0), dt.time(20, 0)):
        assert should_prompt_user(moment, "09:00", "17:30", on_lunch=True, jira_configured=True) is False


def test_prompt_requires_jira_configuration():
    assert should_prompt_user(dt.time(12, 0), "09:00", "17:30", on_lunch=False, jira_configured=True)
    assert not should_prompt_user(dt.time(12, 0), "09:00", "17:30", on_lunch=False, jira_configured=False)


def test_evaluate_status():
    assert evaluate_status(dt.time(12, 0), "09:00", "17:30", on_lunch=False) is TrackingStatus.ACTIVE
    assert evaluate_status(dt.time(18, 0), "09:00", "17:30", on_lunch=False) is TrackingStatus.INACTIVE
    assert evaluate_status(dt.time(18, 0), "09:00", "17:30", on_lunch=True) is TrackingStatus.ON_LUNCH


def test_end_of_day_window_is_one_minute():
    base = dt.datetime(2024, 3, 4, 17, 30, tzinfo=LOCAL_TZ)
    assert is_end_of_day(base, "17:30")
    assert is_end_of_day(base + dt.timedelta(seconds=59), "17:30")
    assert is_end_of_day(base + dt.timedelta(minutes=1), "17:30")
    assert not is_end_of_day(base - dt.timedelta(seconds=1), "17:30")
    assert not is_end_of_day(base + dt.timedelta(minutes=2), "17:30")
    assert not is_end_of_day(base, "later")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("09:00", dt.time(9, 0)),
        ("9:05", dt.time(9, 5)),
        ("17:30:15", dt.time(17, 30, 15)),
        ("5:30 PM", dt.time(17, 30)),
        ("12:00 am", dt.time(0, 0)),
    ],
)
def test_parse_time_string(raw, expected):
    assert parse_time_string(raw) == expected


@pytest.mark.parametrize("raw", ["", "noon", "24:00", "13:00 PM", "9"])
def test_parse_time_string_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_time_string(raw)
