from __future__ import annotations

import datetime as dt
import logging
from types import SimpleNamespace
from typing import List

import pytest

from tasktrack import services
from tasktrack.catalog import LUNCH_TASK_KEY
from tasktrack.events import (
    CalendarScanRequested,
    EndOfDayReached,
    EventBus,
    LunchBreakEnded,
    LunchBreakStarted,
    PromptRequested,
    TrackingEnded,
    TrackingStarted,
    UpdateDataRequested,
)
from tasktrack.models import TimeEntry
from tasktrack.scheduler import IntervalScheduler
from tasktrack.supervisor import TaskSupervisor
from tasktrack.tracking import TrackingStatus
from tasktrack.utils import LOCAL_TZ


class RecordingIndicator:
    def __init__(self) -> None:
        self.statuses: List[TrackingStatus] = []

    def update_status(self, status: TrackingStatus) -> None:
        self.statuses.append(status)


def _build(state, session_factory, manual_loop, clock):
    bus = EventBus()
    indicator = RecordingIndicator()
    scheduler = IntervalScheduler(
        state,
        bus,
        TaskSupervisor(manual_loop),
        session_factory=session_factory,
        status_indicator=indicator,
        loop=manual_loop,
        clock=clock,
    )
    return SimpleNamespace(bus=bus, indicator=indicator, scheduler=scheduler)


@pytest.fixture()
def harness(jira_state, session_factory, manual_loop, clock):
    return _build(jira_state, session_factory, manual_loop, clock)


def _kinds(bus: EventBus) -> List[type]:
    return [type(event) for event in bus.take_pending()]


def test_start_is_idempotent(harness, manual_loop):
    harness.scheduler.start()
    first = len(manual_loop.pending)
    harness.scheduler.start()

    assert len(manual_loop.pending) == first == 3
    assert harness.scheduler.is_running


def test_stop_cancels_everything_and_tolerates_repeats(harness, manual_loop):
    harness.scheduler.stop()
    harness.scheduler.start()
    harness.scheduler.stop()
    harness.scheduler.stop()

    assert manual_loop.pending == []
    assert not harness.scheduler.is_running


def test_prompt_tick_emits_prompt_when_allowed(harness, manual_loop):
    harness.scheduler.start()
    harness.bus.take_pending()

    manual_loop.advance(15 * 60)

    kinds = _kinds(harness.bus)
    assert kinds.count(PromptRequested) == 1
    assert kinds.count(UpdateDataRequested) == 1


def test_prompt_tick_suppressed_without_jira(runtime_state, session_factory, manual_loop, clock):
    harness = _build(runtime_state, session_factory, manual_loop, clock)
    harness.scheduler.start()

    manual_loop.advance(15 * 60)

    assert PromptRequested not in _kinds(harness.bus)


def test_set_prompt_interval_rearms_running_timer(harness, manual_loop):
    harness.scheduler.start()
    harness.bus.take_pending()

    harness.scheduler.set_prompt_interval(5)
    manual_loop.advance(5 * 60)

    assert _kinds(harness.bus).count(PromptRequested) == 1
    with pytest.raises(ValueError):
        harness.scheduler.set_prompt_interval(0)


def test_calendar_interval_zero_tears_down_timer(harness, manual_loop):
    harness.scheduler.start()
    harness.scheduler.set_calendar_scan_interval(30)
    assert harness.scheduler.timers.calendar is not None
    harness.bus.take_pending()

    manual_loop.advance(30 * 60)
    assert CalendarScanRequested in _kinds(harness.bus)

    harness.scheduler.set_calendar_scan_interval(0)
    assert harness.scheduler.timers.calendar is None
    manual_loop.advance(60 * 60)
    assert CalendarScanRequested not in _kinds(harness.bus)


def test_lunch_break_lifecycle(harness, manual_loop, clock, session, make_task):
    task = make_task("ABC-1")
    services.start_tracking(session, task.id, clock())
    harness.scheduler.start()
    harness.bus.take_pending()

    harness.scheduler.start_lunch_break(30)
    manual_loop.run_ready()

    assert harness.scheduler.is_on_lunch_break
    assert not harness.scheduler.should_prompt_user()
    assert harness.indicator.statuses[-1] is TrackingStatus.ON_LUNCH
    session.expire_all()
    entries = session.query(TimeEntry).order_by(TimeEntry.id).all()
    assert entries[0].end_time is not None
    assert entries[1].task.key == LUNCH_TASK_KEY
    assert entries[1].is_open

    manual_loop.advance(10 * 60)
    assert harness.scheduler.lunch_break_remaining == dt.timedelta(minutes=20)

    manual_loop.advance(20 * 60)

    assert not harness.scheduler.is_on_lunch_break
    session.expire_all()
    lunch_entry = session.get(TimeEntry, entries[1].id)
    assert lunch_entry.duration_at(clock()) == dt.timedelta(minutes=30)
    kinds = _kinds(harness.bus)
    assert kinds.count(LunchBreakStarted) == 1
    assert kinds.count(LunchBreakEnded) == 1
    assert harness.indicator.statuses[-1] is TrackingStatus.ACTIVE


def test_end_lunch_break_early(harness, manual_loop, clock, session):
    harness.scheduler.start()
    harness.scheduler.start_lunch_break(45)
    manual_loop.advance(5 * 60)

    harness.scheduler.end_lunch_break()
    manual_loop.run_ready()
    harness.scheduler.end_lunch_break()

    assert not harness.scheduler.is_on_lunch_break
    assert harness.scheduler.timers.lunch is None
    assert harness.scheduler.lunch_break_remaining == dt.timedelta(0)
    lunch_entry = session.query(TimeEntry).one()
    assert lunch_entry.duration_at(clock() + dt.timedelta(hours=1)) == dt.timedelta(minutes=5)
    assert _kinds(harness.bus).count(LunchBreakEnded) == 1


def test_clear_lunch_break_is_silent(harness, manual_loop, session):
    harness.scheduler.start()
    harness.scheduler.start_lunch_break(60)
    manual_loop.run_ready()
    harness.bus.take_pending()

    assert harness.scheduler.clear_lunch_break() is True
    assert harness.scheduler.clear_lunch_break() is False

    assert not harness.scheduler.is_on_lunch_break
    assert harness.scheduler.timers.lunch is None
    assert harness.scheduler.current_status is TrackingStatus.ACTIVE
    assert harness.indicator.statuses[-1] is TrackingStatus.ACTIVE
    assert harness.scheduler.should_prompt_user()

    manual_loop.advance(61 * 60)
    assert LunchBreakEnded not in _kinds(harness.bus)
    # the lunch entry is left to whoever cleared the break
    assert session.query(TimeEntry).one().end_time is None


def test_tracking_transitions_are_edge_triggered(harness, manual_loop, clock):
    clock.set(8, 58)
    harness.scheduler.start()
    assert TrackingStarted not in _kinds(harness.bus)

    manual_loop.advance(5 * 60)
    assert _kinds(harness.bus).count(TrackingStarted) == 1

    manual_loop.advance(10 * 60)
    assert TrackingStarted not in _kinds(harness.bus)

    clock.set(17, 29)
    manual_loop.advance(3 * 60)
    kinds = _kinds(harness.bus)
    assert kinds.count(TrackingEnded) == 1
    assert TrackingStarted not in kinds
    assert harness.indicator.statuses[-1] is TrackingStatus.INACTIVE


def test_start_inside_hours_reports_tracking_started(harness):
    harness.scheduler.start()

    assert _kinds(harness.bus) == [TrackingStarted]
    assert harness.indicator.statuses == [TrackingStatus.ACTIVE]


def test_end_of_day_stops_open_entry_once(harness, manual_loop, clock, session, make_task):
    task = make_task("ABC-2")
    clock.set(17, 29)
    services.start_tracking(session, task.id, clock())
    harness.scheduler.start()
    harness.bus.take_pending()

    manual_loop.advance(60)

    session.expire_all()
    entry = session.query(TimeEntry).one()
    assert entry.end_time is not None
    stopped_at = entry.end_time
    assert EndOfDayReached in _kinds(harness.bus)

    clock.advance(seconds=30)
    services.start_tracking(session, task.id, clock())
    assert harness.scheduler.check_end_of_day() is False
    manual_loop.run_ready()
    session.expire_all()
    assert session.query(TimeEntry).filter(TimeEntry.end_time.is_(None)).count() == 1
    assert session.query(TimeEntry).order_by(TimeEntry.id).first().end_time == stopped_at

    clock.now = dt.datetime.combine(clock().date() + dt.timedelta(days=1), dt.time(17, 30), tzinfo=LOCAL_TZ)
    assert harness.scheduler.check_end_of_day() is True


def test_failing_background_write_is_logged_and_timers_survive(jira_state, manual_loop, clock, caplog):
    def broken_factory():
        raise RuntimeError("database is gone")

    harness = _build(jira_state, broken_factory, manual_loop, clock)
    harness.scheduler.start()
    caplog.set_level(logging.ERROR)

    harness.scheduler.start_lunch_break(15)
    manual_loop.run_ready()

    assert "Background job lunch-start failed" in caplog.text
    assert harness.scheduler.timers.status.is_active
    assert harness.scheduler.is_on_lunch_break


def test_restart_during_lunch_keeps_remaining_time(harness, manual_loop):
    harness.scheduler.start()
    harness.scheduler.start_lunch_break(30)
    manual_loop.advance(10 * 60)

    harness.scheduler.start()
    manual_loop.advance(19 * 60)
    assert harness.scheduler.is_on_lunch_break
    manual_loop.advance(60)
    assert not harness.scheduler.is_on_lunch_break
