from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    is_tracked = Column(Boolean, nullable=False, default=False)
    last_updated = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    tasks = relationship(
        "Task",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Task.key",
    )


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(50), nullable=False, unique=True, index=True)
    summary = Column(String(500), nullable=False)
    status_name = Column(String(100), nullable=True)
    status_category = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    last_updated = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    project = relationship("Project", back_populates="tasks")
    entries = relationship(
        "TimeEntry",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True, index=True)
    day = Column(Date, nullable=False, index=True)
    comment = Column(Text, nullable=True)

    task = relationship("Task", back_populates="entries")

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def duration_at(self, now: dt.datetime) -> dt.timedelta:
        """Elapsed time of the entry; open entries run until ``now``, never negative."""
        start = _as_utc(self.start_time)
        end = _as_utc(self.end_time) if self.end_time is not None else _as_utc(now)
        if end < start:
            return dt.timedelta(0)
        return end - start

    def mark_stopped(self, now: dt.datetime) -> None:
        if self.end_time is not None:
            return
        self.end_time = _as_utc(now)


class LogEntry(Base):
    __tablename__ = "log_entries"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    level = Column(String(20), nullable=False, index=True)
    source = Column(String(200), nullable=False, index=True)
    message = Column(String(500), nullable=False)
    details = Column(Text, nullable=True)
    thread = Column(String(100), nullable=True)
    user = Column(String(100), nullable=True)


def task_label(task: Optional[Task]) -> str:
    if task is None:
        return "-"
    return f"{task.key}: {task.summary}"
