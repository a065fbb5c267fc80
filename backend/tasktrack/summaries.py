from __future__ import annotations

import csv
import datetime as dt
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from openpyxl import Workbook
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from . import services
from .config import settings
from .models import TimeEntry
from .schemas import DailySummary, ExportRow, TaskSummary, WeeklySummary
from .utils import day_bounds, duration_minutes, local_now, to_local, week_bounds

logger = logging.getLogger(__name__)

CSV_HEADER = ["Date", "Start Time", "End Time", "Duration (Minutes)", "Project", "Task", "Summary", "Comment"]
EXPORT_FORMATS = ("csv", "xlsx", "pdf")

GroupKey = Tuple[str, str, str]


def entry_duration(entry: TimeEntry, now: Optional[dt.datetime] = None) -> dt.timedelta:
    return entry.duration_at(now or local_now())


def _group_key(entry: TimeEntry) -> GroupKey:
    task = entry.task
    project_name = task.project.name if task is not None and task.project is not None else ""
    return (task.key if task else "", task.summary if task else "", project_name)


def _entries_for_day(db: Session, day: dt.date) -> List[TimeEntry]:
    entries = services.list_entries_for_day(db, day)
    active = services.get_active_entry(db)
    if active is not None and active.day == day and all(entry.id != active.id for entry in entries):
        entries.append(active)
        entries.sort(key=lambda entry: (entry.start_time, entry.id))
    return entries


def build_daily_summary(day: dt.date, entries: Iterable[TimeEntry], now: Optional[dt.datetime] = None) -> DailySummary:
    """Group ``entries`` by task, sorted by time spent (largest first)."""
    current = now or local_now()
    groups: Dict[GroupKey, List[dt.timedelta]] = OrderedDict()
    seen = set()
    total = dt.timedelta(0)
    for entry in entries:
        if entry.id is not None and entry.id in seen:
            continue
        seen.add(entry.id)
        duration = entry.duration_at(current)
        total += duration
        groups.setdefault(_group_key(entry), []).append(duration)

    tasks = [
        TaskSummary(
            task_key=key,
            task_summary=summary,
            project_name=project,
            time_spent=sum(durations, dt.timedelta(0)),
            entry_count=len(durations),
        )
        for (key, summary, project), durations in groups.items()
    ]
    tasks.sort(key=lambda item: item.time_spent, reverse=True)
    return DailySummary(day=day, total=total, tasks=tasks)


def summarize_day(db: Session, day: dt.date, now: Optional[dt.datetime] = None) -> DailySummary:
    return build_daily_summary(day, _entries_for_day(db, day), now)


def summarize_week(db: Session, day: dt.date, now: Optional[dt.datetime] = None) -> WeeklySummary:
    monday, sunday = week_bounds(day)
    current = now or local_now()
    days = [summarize_day(db, monday + dt.timedelta(days=offset), current) for offset in range(7)]
    total = sum((summary.total for summary in days), dt.timedelta(0))
    return WeeklySummary(week_start=monday, week_end=sunday, total=total, days=days)


def export_rows(
    db: Session,
    start_day: dt.date,
    end_day: dt.date,
    now: Optional[dt.datetime] = None,
) -> List[ExportRow]:
    """Flattened entries of ``start_day`` through ``end_day`` (inclusive), oldest first."""
    if end_day < start_day:
        start_day, end_day = end_day, start_day
    current = now or local_now()
    start, _ = day_bounds(start_day)
    _, end = day_bounds(end_day)
    rows: List[ExportRow] = []
    for entry in services.list_entries_in_range(db, start, end):
        task = entry.task
        started = to_local(entry.start_time)
        ended = to_local(entry.end_time) if entry.end_time is not None else None
        rows.append(
            ExportRow(
                day=entry.day,
                start=started.time().replace(microsecond=0),
                end=ended.time().replace(microsecond=0) if ended is not None else None,
                duration_minutes=duration_minutes(entry.duration_at(current)),
                project=task.project.name if task.project is not None else "",
                task_key=task.key,
                task_summary=task.summary,
                comment=entry.comment or "",
            )
        )
    return rows


def _row_values(row: ExportRow) -> List[str]:
    return [
        row.day.isoformat(),
        row.start.strftime("%H:%M"),
        row.end.strftime("%H:%M") if row.end is not None else "",
        str(row.duration_minutes),
        row.project,
        row.task_key,
        row.task_summary,
        row.comment,
    ]


def write_csv(path: Path, rows: Iterable[ExportRow]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow(_row_values(row))


def write_xlsx(path: Path, rows: Iterable[ExportRow]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Time Entries"
    ws.append(CSV_HEADER)
    for row in rows:
        ws.append(
            [
                row.day,
                row.start.strftime("%H:%M"),
                row.end.strftime("%H:%M") if row.end is not None else "",
                row.duration_minutes,
                row.project,
                row.task_key,
                row.task_summary,
                row.comment,
            ]
        )
    wb.save(path)


def write_pdf(path: Path, title: str, rows: Iterable[ExportRow]) -> None:
    pagesize = landscape(A4)
    pdf = canvas.Canvas(str(path), pagesize=pagesize)
    width, height = pagesize
    columns = [2 * cm, 4.6 * cm, 6.4 * cm, 8.2 * cm, 10.4 * cm, 15 * cm, 18.4 * cm]
    headers = ["Date", "Start", "End", "Minutes", "Project", "Task", "Summary"]

    def header(y: float) -> float:
        pdf.setFont("Helvetica-Bold", 10)
        for x, label in zip(columns, headers):
            pdf.drawString(x, y, label)
        pdf.setFont("Helvetica", 9)
        return y - 0.7 * cm

    y = height - 2 * cm
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y = header(y - 1.2 * cm)
    total = 0
    for row in rows:
        values = _row_values(row)
        total += row.duration_minutes
        for x, value in zip(columns, values[:6] + [values[6][:60]]):
            pdf.drawString(x, y, value)
        y -= 0.6 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = header(height - 2 * cm)
    pdf.setFont("Helvetica-Bold", 10)
    pdf.drawString(2 * cm, max(y - 0.4 * cm, 1 * cm), f"Total: {total // 60:02d}:{total % 60:02d}")
    pdf.save()


def export_entries(
    db: Session,
    start_day: dt.date,
    end_day: dt.date,
    export_format: str = "csv",
    path: Optional[Path] = None,
    now: Optional[dt.datetime] = None,
) -> Path:
    export_format = export_format.lower()
    if export_format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {export_format}")
    rows = export_rows(db, start_day, end_day, now)
    if path is None:
        path = settings.export_dir / f"TimeTracking_{start_day.isoformat()}_{end_day.isoformat()}.{export_format}"
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if export_format == "csv":
        write_csv(path, rows)
    elif export_format == "xlsx":
        write_xlsx(path, rows)
    else:
        write_pdf(path, f"Time Tracking {start_day.isoformat()} - {end_day.isoformat()}", rows)
    logger.info("Exported %s entries to %s", len(rows), path)
    return path
