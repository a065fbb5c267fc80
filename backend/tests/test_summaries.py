from __future__ import annotations

import csv
import datetime as dt

import pytest
from openpyxl import load_workbook

from tasktrack import services, summaries
from tasktrack.utils import LOCAL_TZ


def _at(day: dt.date, hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime.combine(day, dt.time(hour, minute), tzinfo=LOCAL_TZ)


def test_daily_total_sums_entries(session, make_task, sample_day):
    first = make_task("ABC-1")
    second = make_task("ABC-2")
    services.create_manual_entry(session, first.id, _at(sample_day, 9), _at(sample_day, 9, 30))
    services.create_manual_entry(session, second.id, _at(sample_day, 10), _at(sample_day, 10, 45))
    services.create_manual_entry(session, first.id, _at(sample_day, 11), _at(sample_day, 11, 20))

    summary = summaries.summarize_day(session, sample_day, _at(sample_day, 18))

    assert summary.total == dt.timedelta(minutes=95)
    assert summary.total_display == "01:35"
    assert len(summary.tasks) == 2
    assert sum((task.time_spent for task in summary.tasks), dt.timedelta(0)) == dt.timedelta(minutes=95)
    top = summary.tasks[0]
    assert (top.task_key, top.entry_count, top.time_spent) == ("ABC-1", 2, dt.timedelta(minutes=50))
    assert summary.tasks[1].project_name == "Project ABC"


def test_daily_summary_counts_open_entry_once(session, make_task, sample_day):
    task = make_task("ABC-3")
    services.create_manual_entry(session, task.id, _at(sample_day, 8), _at(sample_day, 9))
    services.start_tracking(session, task.id, _at(sample_day, 10))

    summary = summaries.summarize_day(session, sample_day, _at(sample_day, 10, 15))

    assert summary.total == dt.timedelta(minutes=75)
    assert summary.tasks[0].entry_count == 2


def test_weekly_summary_places_open_entry_on_its_start_day(session, make_task, sample_day):
    task = make_task("ABC-4")
    wednesday = sample_day + dt.timedelta(days=2)
    services.create_manual_entry(session, task.id, _at(sample_day, 9), _at(sample_day, 10))
    services.start_tracking(session, task.id, _at(wednesday, 16))
    now = _at(wednesday, 17)

    week = summaries.summarize_week(session, wednesday, now)

    assert week.week_start == sample_day
    assert week.week_end == sample_day + dt.timedelta(days=6)
    assert [day.day for day in week.days][0] == sample_day
    assert len(week.days) == 7
    totals = {day.day: day.total for day in week.days if day.total}
    assert totals == {sample_day: dt.timedelta(hours=1), wednesday: dt.timedelta(hours=1)}
    assert week.total == dt.timedelta(hours=2)


def test_export_rows_are_chronological(session, make_task, sample_day):
    task = make_task("ABC-5", "Write the report")
    services.create_manual_entry(session, task.id, _at(sample_day, 13), _at(sample_day, 13, 40))
    entry = services.create_manual_entry(session, task.id, _at(sample_day, 9), _at(sample_day, 9, 20))
    services.update_entry_comment(session, entry.id, "Draft, part 1")
    services.start_tracking(session, task.id, _at(sample_day, 15))

    rows = summaries.export_rows(session, sample_day, sample_day, _at(sample_day, 15, 10))

    assert [row.start for row in rows] == [dt.time(9, 0), dt.time(13, 0), dt.time(15, 0)]
    assert [row.duration_minutes for row in rows] == [20, 40, 10]
    assert rows[0].comment == "Draft, part 1"
    assert rows[-1].end is None
    assert rows[0].project == "Project ABC"
    assert rows[0].task_summary == "Write the report"


def test_export_csv(tmp_path, session, make_task, sample_day):
    task = make_task("ABC-6", 'Fix "quoted" bug')
    entry = services.create_manual_entry(session, task.id, _at(sample_day, 9), _at(sample_day, 10, 30))
    services.update_entry_comment(session, entry.id, "with, comma")

    path = summaries.export_entries(session, sample_day, sample_day, "csv", tmp_path / "out.csv", _at(sample_day, 18))

    with open(path, newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == summaries.CSV_HEADER
    assert rows[1] == [
        sample_day.isoformat(),
        "09:00",
        "10:30",
        "90",
        "Project ABC",
        "ABC-6",
        'Fix "quoted" bug',
        "with, comma",
    ]


def test_export_xlsx_and_pdf(tmp_path, session, make_task, sample_day):
    task = make_task("ABC-7")
    services.create_manual_entry(session, task.id, _at(sample_day, 9), _at(sample_day, 10))

    xlsx = summaries.export_entries(session, sample_day, sample_day, "xlsx", tmp_path / "out.xlsx")
    pdf = summaries.export_entries(session, sample_day, sample_day, "PDF", tmp_path / "out.pdf")

    sheet = load_workbook(xlsx).active
    assert [cell.value for cell in sheet[1]] == summaries.CSV_HEADER
    assert sheet.cell(row=2, column=6).value == "ABC-7"
    assert pdf.read_bytes().startswith(b"%PDF")


def test_export_rejects_unknown_format(session, sample_day):
    with pytest.raises(ValueError):
        summaries.export_entries(session, sample_day, sample_day, "docx")
