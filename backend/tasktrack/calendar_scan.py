"""Discover JIRA keys such as ``[ABC-123]`` in calendar event titles."""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Iterable, List, Optional, Protocol, Tuple

from caldav import DAVClient
from sqlalchemy.orm import Session

from . import catalog
from .errors import ExternalUnavailable
from .jira import JiraClient, JiraIssue
from .schemas import CalendarSettings
from .utils import LOCAL_TZ

logger = logging.getLogger(__name__)

ISSUE_KEY_PATTERN = re.compile(r"\[(?P<key>[A-Z][A-Z0-9]+-\d+)\]")


def extract_issue_keys(text: Optional[str]) -> List[str]:
    keys: List[str] = []
    for match in ISSUE_KEY_PATTERN.finditer(text or ""):
        key = match.group("key").upper()
        if key not in keys:
            keys.append(key)
    return keys


def default_scan_window(today: dt.date) -> Tuple[dt.date, dt.date]:
    """Monday of this week through Friday of next week."""
    monday = today - dt.timedelta(days=today.weekday())
    return monday, monday + dt.timedelta(days=11)


class CalendarSource(Protocol):
    def list_event_titles(self, start_day: dt.date, end_day: dt.date) -> List[str]:
        ...


def _component_summary(event: Any) -> Optional[str]:
    component = getattr(event, "icalendar_component", None)
    if component is None:
        return None
    summary = component.get("summary")
    if summary is None:
        return None
    return str(summary)


class CalDAVCalendarSource:
    """Reads event titles from every calendar of a CalDAV principal."""

    def __init__(self, calendar_settings: CalendarSettings, timeout: int = 30) -> None:
        self.settings = calendar_settings
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    def _client(self) -> DAVClient:
        return DAVClient(
            url=self.settings.url,
            username=self.settings.username,
            password=self.settings.password,
            timeout=self.timeout,
        )

    def list_event_titles(self, start_day: dt.date, end_day: dt.date) -> List[str]:
        if not self.is_configured:
            return []
        range_start = dt.datetime.combine(start_day, dt.time.min, tzinfo=LOCAL_TZ)
        range_end = dt.datetime.combine(end_day, dt.time(23, 59, 59), tzinfo=LOCAL_TZ)
        titles: List[str] = []
        try:
            with self._client() as client:
                for calendar in client.principal().calendars():
                    for event in calendar.search(start=range_start, end=range_end, event=True, expand=True):
                        summary = _component_summary(event)
                        if summary:
                            titles.append(summary)
        except Exception as exc:
            raise ExternalUnavailable(f"Calendar could not be read: {exc}") from exc
        return titles


def collect_calendar_issues(
    source: CalendarSource,
    jira: JiraClient,
    start_day: dt.date,
    end_day: dt.date,
) -> List[JiraIssue]:
    """Network half of a scan: read titles and keep the keys JIRA knows about."""
    try:
        titles = source.list_event_titles(start_day, end_day)
    except ExternalUnavailable as exc:
        logger.warning("Calendar scan skipped: %s", exc)
        return []
    keys: List[str] = []
    for title in titles:
        for key in extract_issue_keys(title):
            if key not in keys:
                keys.append(key)
    issues: List[JiraIssue] = []
    for key in keys:
        issue = jira.fetch_task(key)
        if issue is None:
            logger.debug("Calendar key %s is unknown to JIRA", key)
            continue
        issues.append(issue)
    logger.info("Calendar scan %s..%s found %s keys, %s known to JIRA", start_day, end_day, len(keys), len(issues))
    return issues


def apply_calendar_issues(db: Session, issues: Iterable[JiraIssue]) -> int:
    count = 0
    for issue in issues:
        catalog.add_task_from_issue(db, issue)
        count += 1
    return count
