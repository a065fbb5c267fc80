from __future__ import annotations

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .utils import format_duration

SECRET_UNCHANGED = "__UNCHANGED__"


class TrackingSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    prompt_interval_minutes: int = Field(default=15, gt=0)
    update_interval_minutes: int = Field(default=15, gt=0)
    prompt_timeout_seconds: int = Field(default=30, gt=0)
    tracking_start_time: str = "09:00"
    tracking_end_time: str = "17:30"
    default_lunch_duration_minutes: int = Field(default=60, gt=0)

    @field_validator("tracking_start_time", "tracking_end_time", mode="before")
    @classmethod
    def _strip_time(cls, value: Optional[str]) -> str:
        # Unparsable strings are kept as-is; the tracking window fails closed on them.
        return (value or "").strip()


class JiraSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    server_url: str = ""
    email: str = ""
    api_token: str = ""

    @field_validator("server_url", "email", "api_token", mode="before")
    @classmethod
    def _strip(cls, value: Optional[str]) -> str:
        return (value or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.server_url and self.email and self.api_token)


class CalendarSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = False
    url: str = ""
    username: str = ""
    password: str = ""
    scan_interval_minutes: int = 60

    @field_validator("url", "username", mode="before")
    @classmethod
    def _strip(cls, value: Optional[str]) -> str:
        return (value or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.url and self.username and self.password)


class AppSettings(BaseModel):
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    jira: JiraSettings = Field(default_factory=JiraSettings)
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)


class TaskSummary(BaseModel):
    task_key: str
    task_summary: str
    project_name: str
    time_spent: dt.timedelta
    entry_count: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def time_spent_display(self) -> str:
        return format_duration(self.time_spent)


class DailySummary(BaseModel):
    day: dt.date
    total: dt.timedelta = dt.timedelta(0)
    tasks: List[TaskSummary] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_display(self) -> str:
        return format_duration(self.total)


class WeeklySummary(BaseModel):
    week_start: dt.date
    week_end: dt.date
    total: dt.timedelta = dt.timedelta(0)
    days: List[DailySummary] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_display(self) -> str:
        return format_duration(self.total)


class ExportRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: dt.date
    start: dt.time
    end: Optional[dt.time]
    duration_minutes: int
    project: str
    task_key: str
    task_summary: str
    comment: str = ""


__all__ = [
    "SECRET_UNCHANGED",
    "TrackingSettings",
    "JiraSettings",
    "CalendarSettings",
    "AppSettings",
    "TaskSummary",
    "DailySummary",
    "WeeklySummary",
    "ExportRow",
]
