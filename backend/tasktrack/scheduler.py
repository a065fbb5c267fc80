from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from . import catalog, services
from .database import SessionFactory, SessionLocal, db_session
from .events import (
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
from .state import RuntimeState
from .supervisor import TaskSupervisor
from .timers import OneShotTimer, RepeatingTimer
from .tracking import TrackingStatus, evaluate_status, is_end_of_day, is_within_tracking_hours, should_prompt_user
from .utils import local_day, local_now

logger = logging.getLogger(__name__)

STATUS_TICK_SECONDS = 60.0


class StatusIndicator(Protocol):
    def update_status(self, status: TrackingStatus) -> None:
        ...


@dataclass
class SchedulerTimers:
    prompt: Optional[RepeatingTimer] = None
    update: Optional[RepeatingTimer] = None
    calendar: Optional[RepeatingTimer] = None
    status: Optional[RepeatingTimer] = None
    lunch: Optional[OneShotTimer] = None

    def stop_all(self) -> None:
        for name in ("prompt", "update", "calendar", "status", "lunch"):
            timer = getattr(self, name)
            if timer is not None:
                timer.stop()
                setattr(self, name, None)


@dataclass
class LunchBreak:
    started_at: dt.datetime
    duration: dt.timedelta
    entry_id: Optional[int] = None

    def remaining(self, now: dt.datetime) -> dt.timedelta:
        left = self.duration - (now - self.started_at)
        return left if left > dt.timedelta(0) else dt.timedelta(0)


@dataclass
class _Observed:
    within_hours: Optional[bool] = None
    last_auto_stop_day: Optional[dt.date] = None
    status: Optional[TrackingStatus] = field(default=None)


class IntervalScheduler:
    """Owns the prompt, refresh, calendar, status and lunch timers.

    Timer callbacks only evaluate state and emit events onto the bus; ledger
    writes are handed to the supervisor so a failing write is logged and the
    timers keep running.
    """

    def __init__(
        self,
        state: RuntimeState,
        bus: EventBus,
        supervisor: TaskSupervisor,
        *,
        session_factory: SessionFactory = SessionLocal,
        status_indicator: Optional[StatusIndicator] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        clock: Callable[[], dt.datetime] = local_now,
    ) -> None:
        self._state = state
        self._bus = bus
        self._supervisor = supervisor
        self._session_factory = session_factory
        self._status_indicator = status_indicator
        self._loop = loop
        self._clock = clock
        self.timers = SchedulerTimers()
        self._lunch: Optional[LunchBreak] = None
        self._observed = _Observed()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def is_running(self) -> bool:
        return self.timers.status is not None

    @property
    def is_on_lunch_break(self) -> bool:
        return self._lunch is not None

    @property
    def lunch_break(self) -> Optional[LunchBreak]:
        return self._lunch

    @property
    def lunch_break_remaining(self) -> dt.timedelta:
        if self._lunch is None:
            return dt.timedelta(0)
        return self._lunch.remaining(self._clock())

    @property
    def current_status(self) -> Optional[TrackingStatus]:
        return self._observed.status

    def set_status_indicator(self, indicator: Optional[StatusIndicator]) -> None:
        self._status_indicator = indicator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self.stop()
        tracking = self._state.tracking
        self.timers.prompt = RepeatingTimer(
            self.loop, tracking.prompt_interval_minutes * 60, self._on_prompt_tick, name="prompt"
        ).start()
        self.timers.update = RepeatingTimer(
            self.loop, tracking.update_interval_minutes * 60, self._on_update_tick, name="update"
        ).start()
        calendar = self._state.calendar
        if calendar.is_configured and calendar.scan_interval_minutes > 0:
            self.set_calendar_scan_interval(calendar.scan_interval_minutes)
        self.timers.status = RepeatingTimer(
            self.loop, STATUS_TICK_SECONDS, self._on_status_tick, name="status"
        ).start()
        if self._lunch is not None:
            self._arm_lunch_timer(self._lunch.remaining(self._clock()))
        self._observed.within_hours = None
        logger.info(
            "Scheduler started (prompt every %s min, refresh every %s min)",
            tracking.prompt_interval_minutes,
            tracking.update_interval_minutes,
        )
        self.check_tracking_status()

    def stop(self) -> None:
        if self.is_running:
            logger.info("Scheduler stopped")
        self.timers.stop_all()

    def set_prompt_interval(self, minutes: int) -> None:
        if minutes <= 0:
            raise ValueError("Prompt interval must be positive")
        if self.timers.prompt is not None:
            self.timers.prompt.set_interval(minutes * 60)

    def set_update_interval(self, minutes: int) -> None:
        if minutes <= 0:
            raise ValueError("Update interval must be positive")
        if self.timers.update is not None:
            self.timers.update.set_interval(minutes * 60)

    def set_calendar_scan_interval(self, minutes: int) -> None:
        if minutes <= 0:
            if self.timers.calendar is not None:
                self.timers.calendar.stop()
                self.timers.calendar = None
                logger.info("Calendar scan disabled")
            return
        if self.timers.calendar is None:
            self.timers.calendar = RepeatingTimer(self.loop, minutes * 60, self._on_calendar_tick, name="calendar")
        else:
            self.timers.calendar.set_interval(minutes * 60)
        self.timers.calendar.start()

    # ------------------------------------------------------------------
    # Lunch break
    # ------------------------------------------------------------------
    def start_lunch_break(self, duration_minutes: Optional[int] = None) -> LunchBreak:
        minutes = duration_minutes if duration_minutes is not None else self._state.tracking.default_lunch_duration_minutes
        if minutes <= 0:
            raise ValueError("Lunch duration must be positive")
        now = self._clock()
        session = LunchBreak(started_at=now, duration=dt.timedelta(minutes=minutes))
        self._lunch = session
        self._arm_lunch_timer(session.duration)
        self._push_status(TrackingStatus.ON_LUNCH)
        self._supervisor.spawn("lunch-start", lambda: self._open_lunch_entry(session))
        self._bus.emit(LunchBreakStarted(duration_minutes=minutes))
        logger.info("Lunch break started for %s minutes", minutes)
        return session

    def end_lunch_break(self) -> None:
        session = self._drop_lunch()
        if session is None:
            return
        ended_at = self._clock()
        self._supervisor.spawn("lunch-end", lambda: self._close_lunch_entry(session, ended_at))
        logger.info("Lunch break ended")
        self._bus.emit(LunchBreakEnded())
        self.check_tracking_status()

    def clear_lunch_break(self) -> bool:
        """Forget a running break because the ledger already moved on.

        The lunch entry has been closed by whoever started or stopped
        tracking, so nothing is written and no ``LunchBreakEnded`` follows.
        """
        if self._drop_lunch() is None:
            return False
        logger.info("Lunch break cleared by a new tracking period")
        self.check_tracking_status()
        return True

    def _drop_lunch(self) -> Optional[LunchBreak]:
        if self.timers.lunch is not None:
            self.timers.lunch.stop()
            self.timers.lunch = None
        session, self._lunch = self._lunch, None
        return session

    def _arm_lunch_timer(self, delay: dt.timedelta) -> None:
        if self.timers.lunch is None:
            self.timers.lunch = OneShotTimer(self.loop, self.end_lunch_break, name="lunch")
        self.timers.lunch.start(delay.total_seconds())

    def _open_lunch_entry(self, session: LunchBreak) -> None:
        with db_session(self._session_factory) as db:
            lunch_task = catalog.ensure_lunch_task(db)
            entry = services.start_tracking(db, lunch_task.id, session.started_at)
            session.entry_id = entry.id

    def _close_lunch_entry(self, session: LunchBreak, ended_at: dt.datetime) -> None:
        if session.entry_id is None:
            logger.warning("Lunch break ended without a recorded lunch entry")
            return
        with db_session(self._session_factory) as db:
            services.finish_entry(db, session.entry_id, ended_at)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------
    def should_prompt_user(self) -> bool:
        tracking = self._state.tracking
        return should_prompt_user(
            self._clock(),
            tracking.tracking_start_time,
            tracking.tracking_end_time,
            on_lunch=self.is_on_lunch_break,
            jira_configured=self._state.jira.is_configured,
        )

    def is_within_tracking_hours(self) -> bool:
        tracking = self._state.tracking
        return is_within_tracking_hours(self._clock(), tracking.tracking_start_time, tracking.tracking_end_time)

    def _on_prompt_tick(self) -> None:
        if self.should_prompt_user():
            self._bus.emit(PromptRequested(reason="interval"))
        else:
            logger.debug("Prompt due but suppressed (lunch, outside hours or JIRA not configured)")

    def _on_update_tick(self) -> None:
        if self.is_within_tracking_hours():
            self._bus.emit(UpdateDataRequested())

    def _on_calendar_tick(self) -> None:
        if self.is_within_tracking_hours():
            self._bus.emit(CalendarScanRequested())

    def _on_status_tick(self) -> None:
        self.check_tracking_status()
        self.check_end_of_day()

    def check_tracking_status(self) -> TrackingStatus:
        tracking = self._state.tracking
        now = self._clock()
        status = evaluate_status(
            now,
            tracking.tracking_start_time,
            tracking.tracking_end_time,
            on_lunch=self.is_on_lunch_break,
        )
        self._push_status(status)
        if status is TrackingStatus.ON_LUNCH:
            return status

        within = status is TrackingStatus.ACTIVE
        previous = self._observed.within_hours
        self._observed.within_hours = within
        if within and previous is not True:
            logger.info("Tracking hours started")
            self._bus.emit(TrackingStarted())
        elif not within and previous is True:
            logger.info("Tracking hours ended")
            self._bus.emit(TrackingEnded())
        return status

    def check_end_of_day(self) -> bool:
        """Stop the open entry once per day when the tick lands just after the end time."""
        now = self._clock()
        today = local_day(now)
        if self._observed.last_auto_stop_day == today:
            return False
        if not is_end_of_day(now, self._state.tracking.tracking_end_time):
            return False
        self._observed.last_auto_stop_day = today
        self._drop_lunch()
        self._supervisor.spawn("end-of-day-stop", lambda: self._stop_open_entry(now))
        self._bus.emit(EndOfDayReached())
        logger.info("End of tracking day reached, stopping the open entry")
        return True

    def _stop_open_entry(self, now: dt.datetime) -> None:
        with db_session(self._session_factory) as db:
            services.stop_tracking(db, now)

    def _push_status(self, status: TrackingStatus) -> None:
        self._observed.status = status
        if self._status_indicator is None:
            return
        try:
            self._status_indicator.update_status(status)
        except Exception:
            logger.exception("Status indicator rejected %s", status.value)
