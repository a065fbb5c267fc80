from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy.orm import Session

from tasktrack import services
from tasktrack.errors import InvalidRange, NotFound
from tasktrack.models import TimeEntry
from tasktrack.utils import LOCAL_TZ, from_db_datetime


def _at(day: dt.date, hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime.combine(day, dt.time(hour, minute), tzinfo=LOCAL_TZ)


def _open_count(session: Session) -> int:
    return session.query(TimeEntry).filter(TimeEntry.end_time.is_(None)).count()


def test_start_records_local_day_and_utc_start(session: Session, make_task, sample_day):
    task = make_task("ABC-1")
    entry = services.start_tracking(session, task.id, _at(sample_day, 9, 30))

    assert entry.is_open
    assert entry.day == sample_day
    assert from_db_datetime(entry.start_time) == _at(sample_day, 9, 30).astimezone(dt.timezone.utc)


def test_start_unknown_task_raises_not_found(session: Session, sample_day):
    with pytest.raises(NotFound):
        services.start_tracking(session, 999, _at(sample_day, 9))
    assert session.query(TimeEntry).count() == 0


def test_start_then_switch_leaves_single_open_entry(session: Session, make_task, sample_day):
    first = make_task("ABC-5")
    second = make_task("ABC-7")
    services.start_tracking(session, first.id, _at(sample_day, 9))
    switched_at = _at(sample_day, 10, 15)
    services.switch_task(session, second.id, switched_at)

    entries = session.query(TimeEntry).order_by(TimeEntry.id).all()
    assert len(entries) == 2
    assert entries[0].task_id == first.id
    assert from_db_datetime(entries[0].end_time) == switched_at.astimezone(dt.timezone.utc)
    assert entries[1].task_id == second.id
    assert entries[1].end_time is None
    assert _open_count(session) == 1


def test_switch_to_active_task_is_noop(session: Session, make_task, sample_day):
    task = make_task("ABC-2")
    entry = services.start_tracking(session, task.id, _at(sample_day, 9))
    started = entry.start_time

    same = services.switch_task(session, task.id, _at(sample_day, 11))

    assert same.id == entry.id
    assert same.start_time == started
    assert session.query(TimeEntry).count() == 1


def test_stop_twice_is_idempotent(session: Session, make_task, sample_day):
    task = make_task("ABC-3")
    services.start_tracking(session, task.id, _at(sample_day, 9))
    first = services.stop_tracking(session, _at(sample_day, 10))
    end_after_first = first.end_time

    assert services.stop_tracking(session, _at(sample_day, 11)) is None
    session.refresh(first)
    assert first.end_time == end_after_first
    assert _open_count(session) == 0


@pytest.mark.parametrize(
    "actions",
    [
        ["start:A", "start:B", "stop", "start:A"],
        ["start:A", "switch:A", "switch:B", "switch:C", "stop", "stop"],
        ["switch:B", "start:C", "switch:A", "start:A"],
    ],
)
def test_at_most_one_open_entry_for_any_sequence(session: Session, make_task, sample_day, actions):
    tasks = {name: make_task(f"SEQ-{index}") for index, name in enumerate("ABC", start=1)}
    moment = _at(sample_day, 8)
    for action in actions:
        moment += dt.timedelta(minutes=7)
        verb, _, name = action.partition(":")
        if verb == "start":
            services.start_tracking(session, tasks[name].id, moment)
        elif verb == "switch":
            services.switch_task(session, tasks[name].id, moment)
        else:
            services.stop_tracking(session, moment)
        assert _open_count(session) <= 1


def test_update_times_rejects_end_not_after_start(session: Session, make_task, sample_day):
    task = make_task("ABC-4")
    entry = services.create_manual_entry(session, task.id, _at(sample_day, 9), _at(sample_day, 10))
    original = (entry.start_time, entry.end_time)

    with pytest.raises(InvalidRange):
        services.update_entry_times(session, entry.id, _at(sample_day, 12), _at(sample_day, 12))
    with pytest.raises(InvalidRange):
        services.update_entry_times(session, entry.id, _at(sample_day, 12), _at(sample_day, 11))

    session.refresh(entry)
    assert (entry.start_time, entry.end_time) == original


def test_update_times_recomputes_day(session: Session, make_task, sample_day):
    task = make_task("ABC-6")
    entry = services.create_manual_entry(session, task.id, _at(sample_day, 9), _at(sample_day, 10))
    next_day = sample_day + dt.timedelta(days=1)

    updated = services.update_entry_times(session, entry.id, _at(next_day, 13), _at(next_day, 14, 30))

    assert updated.day == next_day
    assert updated.duration_at(_at(next_day, 20)) == dt.timedelta(minutes=90)


def test_reopening_entry_while_another_is_open_is_rejected(session: Session, make_task, sample_day):
    task = make_task("ABC-8")
    closed = services.create_manual_entry(session, task.id, _at(sample_day, 8), _at(sample_day, 9))
    services.start_tracking(session, task.id, _at(sample_day, 10))

    with pytest.raises(InvalidRange):
        services.update_entry_times(session, closed.id, _at(sample_day, 8), None)
    assert _open_count(session) == 1


def test_update_task_and_comment(session: Session, make_task, sample_day):
    first = make_task("ABC-9")
    second = make_task("XYZ-1")
    entry = services.create_manual_entry(session, first.id, _at(sample_day, 9), _at(sample_day, 10))

    moved = services.update_entry_task(session, entry.id, second.id)
    assert moved.task_id == second.id
    assert moved.duration_at(_at(sample_day, 23)) == dt.timedelta(hours=1)

    with pytest.raises(NotFound):
        services.update_entry_task(session, entry.id, 12345)
    with pytest.raises(NotFound):
        services.update_entry_task(session, 12345, second.id)

    assert services.update_entry_comment(session, entry.id, "Code review").comment == "Code review"
    assert services.update_entry_comment(session, entry.id, "").comment is None


def test_delete_entry(session: Session, make_task, sample_day):
    task = make_task("ABC-10")
    entry = services.create_manual_entry(session, task.id, _at(sample_day, 9), _at(sample_day, 10))

    services.delete_entry(session, entry.id)

    assert session.query(TimeEntry).count() == 0
    with pytest.raises(NotFound):
        services.delete_entry(session, entry.id)


def test_range_queries_include_open_entry_and_sort_ascending(session: Session, make_task, sample_day):
    task = make_task("ABC-11")
    services.create_manual_entry(session, task.id, _at(sample_day, 11), _at(sample_day, 12))
    services.create_manual_entry(session, task.id, _at(sample_day, 8), _at(sample_day, 9))
    services.start_tracking(session, task.id, _at(sample_day, 13))
    services.create_manual_entry(
        session, task.id, _at(sample_day + dt.timedelta(days=1), 8), _at(sample_day + dt.timedelta(days=1), 9)
    )

    entries = services.list_entries_for_day(session, sample_day)

    assert [from_db_datetime(entry.start_time).astimezone(LOCAL_TZ).hour for entry in entries] == [8, 11, 13]
    assert entries[-1].is_open


def test_duration_of_open_and_closed_entries(session: Session, make_task, sample_day):
    task = make_task("ABC-12")
    entry = services.start_tracking(session, task.id, _at(sample_day, 10))

    assert entry.duration_at(_at(sample_day, 10, 15)) == dt.timedelta(minutes=15)

    services.stop_tracking(session, _at(sample_day, 10, 10))
    session.refresh(entry)
    assert entry.duration_at(_at(sample_day, 10, 15)) == dt.timedelta(minutes=10)
    assert entry.duration_at(_at(sample_day, 18)) == dt.timedelta(minutes=10)


def test_duration_never_negative(session: Session, make_task, sample_day):
    task = make_task("ABC-13")
    entry = services.start_tracking(session, task.id, _at(sample_day, 10))

    assert entry.duration_at(_at(sample_day, 9)) == dt.timedelta(0)


def test_finish_entry_keeps_existing_end(session: Session, make_task, sample_day):
    task = make_task("ABC-14")
    entry = services.start_tracking(session, task.id, _at(sample_day, 12))
    services.finish_entry(session, entry.id, _at(sample_day, 12, 30))
    services.finish_entry(session, entry.id, _at(sample_day, 13))

    session.refresh(entry)
    assert entry.duration_at(_at(sample_day, 14)) == dt.timedelta(minutes=30)
