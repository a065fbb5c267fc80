"""Thin JIRA Cloud REST client used to discover projects and tasks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote, urljoin

import requests

from .errors import ExternalUnavailable
from .schemas import JiraSettings

logger = logging.getLogger(__name__)

ISSUE_FIELDS = "summary,status,assignee,project"
PAGE_SIZE = 100


@dataclass(frozen=True)
class JiraProjectInfo:
    code: str
    name: str


@dataclass(frozen=True)
class JiraIssue:
    key: str
    summary: str
    project_code: str
    project_name: str
    status_name: Optional[str] = None
    status_category: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "JiraIssue":
        fields = payload.get("fields") or {}
        project = fields.get("project") or {}
        status = fields.get("status") or {}
        category = status.get("statusCategory") or {}
        return cls(
            key=str(payload.get("key", "")).strip().upper(),
            summary=fields.get("summary") or "",
            project_code=project.get("key") or "",
            project_name=project.get("name") or project.get("key") or "",
            status_name=status.get("name"),
            status_category=category.get("key"),
        )


class JiraClient:
    """Blocking client; the application runs it in an executor, never on a timer tick."""

    def __init__(self, jira_settings: JiraSettings, timeout: int = 15) -> None:
        self.settings = jira_settings
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = urljoin(self.settings.server_url.rstrip("/") + "/", path.lstrip("/"))
        kwargs.setdefault("timeout", self.timeout)
        headers = kwargs.setdefault("headers", {})
        headers["Accept"] = "application/json"
        kwargs.setdefault("auth", (self.settings.email, self.settings.api_token))
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise ExternalUnavailable(f"JIRA request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ExternalUnavailable(
                f"JIRA answered {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalUnavailable(f"JIRA returned invalid JSON for {path}") from exc

    def _search(self, jql: str, fields: str, max_results: int) -> List[Dict[str, Any]]:
        issues: List[Dict[str, Any]] = []
        start_at = 0
        while True:
            data = self._request(
                "GET",
                "/rest/api/2/search",
                params={"jql": jql, "fields": fields, "startAt": start_at, "maxResults": max_results},
            ) or {}
            page = data.get("issues") or []
            issues.extend(page)
            total = int(data.get("total") or 0)
            start_at += len(page)
            if not page or start_at >= total:
                return issues

    def test_connection(self) -> bool:
        if not self.is_configured:
            return False
        try:
            self._request("GET", "/rest/api/2/myself")
        except ExternalUnavailable as exc:
            logger.warning("JIRA connection test failed: %s", exc)
            return False
        return True

    def fetch_projects(self) -> List[JiraProjectInfo]:
        """Projects in which the current user has at least one open issue."""
        if not self.is_configured:
            return []
        try:
            issues = self._search("assignee = currentUser() AND statusCategory != Done", "project", 1000)
        except ExternalUnavailable as exc:
            logger.warning("Could not fetch JIRA projects: %s", exc)
            return []
        projects: Dict[str, JiraProjectInfo] = {}
        for issue in issues:
            project = (issue.get("fields") or {}).get("project") or {}
            code = project.get("key")
            if code and code not in projects:
                projects[code] = JiraProjectInfo(code=code, name=project.get("name") or code)
        return sorted(projects.values(), key=lambda item: item.name)

    def fetch_tasks(self, project_codes: Iterable[str]) -> List[JiraIssue]:
        codes = [code for code in project_codes if code]
        if not self.is_configured or not codes:
            return []
        jql = (
            f"assignee = currentUser() AND project in ({','.join(codes)}) "
            "AND statusCategory != Done ORDER BY key ASC"
        )
        try:
            issues = self._search(jql, ISSUE_FIELDS, PAGE_SIZE)
        except ExternalUnavailable as exc:
            logger.warning("Could not fetch JIRA tasks for %s: %s", ", ".join(codes), exc)
            return []
        return [JiraIssue.from_payload(issue) for issue in issues]

    def fetch_task(self, key: str) -> Optional[JiraIssue]:
        key = (key or "").strip()
        if not self.is_configured or not key:
            return None
        try:
            data = self._request("GET", f"/rest/api/2/issue/{quote(key)}", params={"fields": ISSUE_FIELDS})
        except ExternalUnavailable as exc:
            if exc.status_code != 404:
                logger.warning("Could not fetch JIRA issue %s: %s", key, exc)
            return None
        if not data:
            return None
        return JiraIssue.from_payload(data)

    def fetch_issue_status(self, key: str) -> Optional[Tuple[str, str]]:
        key = (key or "").strip()
        if not self.is_configured or not key:
            return None
        try:
            data = self._request("GET", f"/rest/api/2/issue/{quote(key)}", params={"fields": "status"})
        except ExternalUnavailable as exc:
            logger.debug("Could not fetch status of %s: %s", key, exc)
            return None
        status = ((data or {}).get("fields") or {}).get("status")
        if not status:
            return None
        return status.get("name") or "", (status.get("statusCategory") or {}).get("key") or ""
