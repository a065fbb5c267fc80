from __future__ import annotations

import datetime as dt
from typing import Dict, List, Optional

from tasktrack.calendar_scan import (
    CalDAVCalendarSource,
    apply_calendar_issues,
    collect_calendar_issues,
    default_scan_window,
    extract_issue_keys,
)
from tasktrack.errors import ExternalUnavailable
from tasktrack.jira import JiraIssue
from tasktrack.models import Task
from tasktrack.schemas import CalendarSettings


class FakeSource:
    def __init__(self, titles: List[str], error: Optional[Exception] = None) -> None:
        self.titles = titles
        self.error = error
        self.ranges: List[tuple] = []

    def list_event_titles(self, start_day: dt.date, end_day: dt.date) -> List[str]:
        self.ranges.append((start_day, end_day))
        if self.error is not None:
            raise self.error
        return self.titles


class FakeJira:
    def __init__(self, known: Dict[str, str]) -> None:
        self.known = known
        self.requested: List[str] = []

    def fetch_task(self, key: str) -> Optional[JiraIssue]:
        self.requested.append(key)
        if key not in self.known:
            return None
        code = key.split("-")[0]
        return JiraIssue(key=key, summary=self.known[key], project_code=code, project_name=f"{code} Project")


def test_extract_issue_keys():
    assert extract_issue_keys("[ABC-12] Sync with [XY2-7] and [ABC-12]") == ["ABC-12", "XY2-7"]
    assert extract_issue_keys("ABC-12 without brackets") == []
    assert extract_issue_keys("[abc-12] lower case is ignored") == []
    assert extract_issue_keys(None) == []


def test_default_scan_window_runs_to_next_friday():
    thursday = dt.date(2024, 3, 7)
    start, end = default_scan_window(thursday)

    assert start == dt.date(2024, 3, 4)
    assert end == dt.date(2024, 3, 15)
    assert end.weekday() == 4


def test_scan_adds_only_keys_known_to_jira(session):
    source = FakeSource(["Standup", "[ABC-1] Planning", "Review [ABC-1] [GONE-5]", "[XYZ-2] Demo"])
    jira = FakeJira({"ABC-1": "Planning", "XYZ-2": "Demo prep"})

    issues = collect_calendar_issues(source, jira, dt.date(2024, 3, 4), dt.date(2024, 3, 15))
    added = apply_calendar_issues(session, issues)

    assert added == 2
    assert jira.requested == ["ABC-1", "GONE-5", "XYZ-2"]
    assert sorted(task.key for task in session.query(Task).all()) == ["ABC-1", "XYZ-2"]


def test_scan_survives_unavailable_calendar():
    source = FakeSource([], error=ExternalUnavailable("calendar offline"))
    jira = FakeJira({})

    assert collect_calendar_issues(source, jira, dt.date(2024, 3, 4), dt.date(2024, 3, 15)) == []
    assert jira.requested == []


def test_unconfigured_caldav_source_returns_nothing():
    source = CalDAVCalendarSource(CalendarSettings(enabled=False, url="https://cal.example.com"))

    assert source.is_configured is False
    assert source.list_event_titles(dt.date(2024, 3, 4), dt.date(2024, 3, 15)) == []
