from __future__ import annotations

import csv
import datetime as dt
import getpass
import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .database import SessionFactory, SessionLocal
from .models import LogEntry
from .utils import ensure_utc, from_db_datetime

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
MESSAGE_LIMIT = 500
LOG_CSV_HEADER = ["Timestamp (UTC)", "Level", "Source", "Message", "Details", "Thread", "User"]


def _current_user() -> Optional[str]:
    try:
        return getpass.getuser()
    except Exception:
        return None


class DatabaseLogHandler(logging.Handler):
    """Persists log records into ``log_entries`` for the in-app log viewer."""

    def __init__(self, session_factory: SessionFactory = SessionLocal, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._session_factory = session_factory
        self._local = threading.local()
        self._user = _current_user()

    def emit(self, record: logging.LogRecord) -> None:
        # Statements logged by SQLAlchemy while writing would recurse.
        if record.name.startswith("sqlalchemy") or getattr(self._local, "busy", False):
            return
        self._local.busy = True
        try:
            message = record.getMessage()
            details = None
            if record.exc_info:
                details = logging.Formatter().formatException(record.exc_info)
            session = self._session_factory()
            try:
                session.add(
                    LogEntry(
                        created_at=dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc),
                        level=record.levelname,
                        source=record.name[:200],
                        message=message[:MESSAGE_LIMIT],
                        details=details,
                        thread=(record.threadName or str(record.thread))[:100],
                        user=self._user,
                    )
                )
                session.commit()
            finally:
                session.close()
        except Exception:
            self.handleError(record)
        finally:
            self._local.busy = False


def configure_logging(
    level: str = "INFO",
    *,
    persist: bool = False,
    session_factory: SessionFactory = SessionLocal,
) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
    )
    root = logging.getLogger()
    if persist and not any(isinstance(handler, DatabaseLogHandler) for handler in root.handlers):
        root.addHandler(DatabaseLogHandler(session_factory))


def list_log_entries(
    db: Session,
    *,
    since: Optional[dt.datetime] = None,
    until: Optional[dt.datetime] = None,
    level: Optional[str] = None,
    source: Optional[str] = None,
    text: Optional[str] = None,
    limit: int = 500,
) -> List[LogEntry]:
    query = db.query(LogEntry)
    if since is not None:
        query = query.filter(LogEntry.created_at >= ensure_utc(since))
    if until is not None:
        query = query.filter(LogEntry.created_at <= ensure_utc(until))
    if level:
        query = query.filter(LogEntry.level == level.upper())
    if source:
        query = query.filter(LogEntry.source == source)
    if text:
        pattern = f"%{text}%"
        query = query.filter(or_(LogEntry.message.like(pattern), LogEntry.details.like(pattern)))
    return query.order_by(LogEntry.created_at.desc(), LogEntry.id.desc()).limit(limit).all()


def export_log_entries_csv(entries: Iterable[LogEntry], path: Path) -> int:
    count = 0
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(LOG_CSV_HEADER)
        for entry in entries:
            created = from_db_datetime(entry.created_at)
            writer.writerow(
                [
                    created.isoformat() if created else "",
                    entry.level,
                    entry.source,
                    entry.message,
                    entry.details or "",
                    entry.thread or "",
                    entry.user or "",
                ]
            )
            count += 1
    return count
