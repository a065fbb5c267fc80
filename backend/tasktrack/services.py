from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session, joinedload

from .errors import InvalidRange, NotFound
from .models import Task, TimeEntry
from .utils import day_bounds, ensure_utc, local_day, local_now

logger = logging.getLogger(__name__)


def _now(now: Optional[dt.datetime]) -> dt.datetime:
    return now if now is not None else local_now()


def _entry_query(db: Session):
    return db.query(TimeEntry).options(joinedload(TimeEntry.task).joinedload(Task.project))


def _require_task(db: Session, task_id: int) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFound(f"Task {task_id} does not exist")
    return task


def _require_entry(db: Session, entry_id: int) -> TimeEntry:
    entry = db.get(TimeEntry, entry_id)
    if entry is None:
        raise NotFound(f"Time entry {entry_id} not found")
    return entry


def _open_entries(db: Session) -> List[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(TimeEntry.end_time.is_(None))
        .order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc())
        .all()
    )


def get_active_entry(db: Session) -> Optional[TimeEntry]:
    return (
        _entry_query(db)
        .filter(TimeEntry.end_time.is_(None))
        .order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc())
        .first()
    )


def get_last_entry(db: Session) -> Optional[TimeEntry]:
    return _entry_query(db).order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc()).first()


def get_entry(db: Session, entry_id: int) -> Optional[TimeEntry]:
    return _entry_query(db).filter(TimeEntry.id == entry_id).one_or_none()


def _close_open_entries(db: Session, now: dt.datetime) -> Optional[TimeEntry]:
    closed: Optional[TimeEntry] = None
    for entry in _open_entries(db):
        entry.mark_stopped(now)
        db.add(entry)
        if closed is None:
            closed = entry
    return closed


def start_tracking(db: Session, task_id: int, now: Optional[dt.datetime] = None) -> TimeEntry:
    """Close whatever is open and open a new entry for ``task_id``."""
    current = _now(now)
    task = _require_task(db, task_id)
    _close_open_entries(db, current)
    entry = TimeEntry(
        task_id=task.id,
        start_time=ensure_utc(current),
        day=local_day(current),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info("Started tracking %s (entry %s)", task.key, entry.id)
    return entry


def stop_tracking(db: Session, now: Optional[dt.datetime] = None) -> Optional[TimeEntry]:
    closed = _close_open_entries(db, _now(now))
    if closed is None:
        logger.debug("No active time entry to stop")
        return None
    db.commit()
    db.refresh(closed)
    logger.info("Stopped time entry %s", closed.id)
    return closed


def finish_entry(db: Session, entry_id: int, now: Optional[dt.datetime] = None) -> TimeEntry:
    """Close one specific entry; an entry that is already closed keeps its end time."""
    entry = _require_entry(db, entry_id)
    if entry.is_open:
        entry.mark_stopped(_now(now))
        db.add(entry)
        db.commit()
        db.refresh(entry)
    return entry


def switch_task(db: Session, task_id: int, now: Optional[dt.datetime] = None) -> TimeEntry:
    active = get_active_entry(db)
    if active is not None and active.task_id == task_id:
        return active
    return start_tracking(db, task_id, now)


def update_entry_times(
    db: Session,
    entry_id: int,
    new_start: dt.datetime,
    new_end: Optional[dt.datetime],
) -> TimeEntry:
    entry = _require_entry(db, entry_id)
    start_utc = ensure_utc(new_start)
    end_utc = ensure_utc(new_end) if new_end is not None else None
    if end_utc is not None and end_utc <= start_utc:
        raise InvalidRange("End time must be after start time")
    if end_utc is None:
        others = [other for other in _open_entries(db) if other.id != entry.id]
        if others:
            raise InvalidRange(f"Time entry {others[0].id} is still open; only one entry may run at a time")
    entry.start_time = start_utc
    entry.end_time = end_utc
    entry.day = local_day(new_start)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def update_entry_task(db: Session, entry_id: int, task_id: int) -> TimeEntry:
    entry = _require_entry(db, entry_id)
    _require_task(db, task_id)
    entry.task_id = task_id
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def update_entry_comment(db: Session, entry_id: int, comment: Optional[str]) -> TimeEntry:
    entry = _require_entry(db, entry_id)
    entry.comment = comment if comment else None
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def create_manual_entry(
    db: Session,
    task_id: int,
    start_time: dt.datetime,
    end_time: dt.datetime,
    comment: Optional[str] = None,
) -> TimeEntry:
    """Add a closed historical entry, as entered in the "add time entry" dialog."""
    _require_task(db, task_id)
    start_utc = ensure_utc(start_time)
    end_utc = ensure_utc(end_time)
    if end_utc <= start_utc:
        raise InvalidRange("End time must be after start time")
    entry = TimeEntry(
        task_id=task_id,
        start_time=start_utc,
        end_time=end_utc,
        day=local_day(start_time),
        comment=comment or None,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def delete_entry(db: Session, entry_id: int) -> None:
    entry = _require_entry(db, entry_id)
    db.delete(entry)
    db.commit()
    logger.info("Deleted time entry %s", entry_id)


def list_entries_in_range(db: Session, start: dt.datetime, end: dt.datetime) -> List[TimeEntry]:
    """Entries whose start lies in ``[start, end)``, open ones included, oldest first."""
    return (
        _entry_query(db)
        .filter(and_(TimeEntry.start_time >= ensure_utc(start), TimeEntry.start_time < ensure_utc(end)))
        .order_by(TimeEntry.start_time.asc(), TimeEntry.id.asc())
        .all()
    )


def list_entries_for_day(db: Session, day: dt.date) -> List[TimeEntry]:
    start, end = day_bounds(day)
    return list_entries_in_range(db, start, end)
