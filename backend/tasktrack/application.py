from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Set, Tuple

from . import catalog, services
from .calendar_scan import CalDAVCalendarSource, CalendarSource, apply_calendar_issues, collect_calendar_issues, default_scan_window
from .database import SessionFactory, SessionLocal, db_session
from .events import (
    CalendarScanRequested,
    EndOfDayReached,
    EventBus,
    LunchBreakEnded,
    LunchBreakStarted,
    PromptCancelled,
    PromptRequested,
    PromptTimedOut,
    TaskSelected,
    TrackingEnded,
    TrackingStarted,
    UpdateDataRequested,
)
from .jira import JiraClient
from .prompt import PromptCycle
from .scheduler import IntervalScheduler, StatusIndicator
from .schemas import CalendarSettings, JiraSettings
from .state import RuntimeState
from .supervisor import TaskSupervisor
from .utils import local_day, local_now

logger = logging.getLogger(__name__)

PROMPT_DELAY_AFTER_LUNCH = 1.0
PROMPT_DELAY_AFTER_TRACKING_START = 2.0


class Shell(Protocol):
    """What the embedding UI offers the core."""

    def show_prompt(self, cycle: PromptCycle) -> None:
        ...

    def notify(self, title: str, message: str) -> None:
        ...


class TrackerApplication:
    """Wires scheduler, prompt cycle, ledger and the JIRA/calendar collaborators."""

    def __init__(
        self,
        state: RuntimeState,
        *,
        session_factory: SessionFactory = SessionLocal,
        jira_factory: Callable[[JiraSettings], JiraClient] = JiraClient,
        calendar_factory: Callable[[CalendarSettings], CalendarSource] = CalDAVCalendarSource,
        status_indicator: Optional[StatusIndicator] = None,
        shell: Optional[Shell] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        clock: Callable[[], dt.datetime] = local_now,
    ) -> None:
        self.state = state
        self.shell = shell
        self._session_factory = session_factory
        self._jira_factory = jira_factory
        self._calendar_factory = calendar_factory
        self._loop = loop
        self._clock = clock
        self.bus = EventBus()
        self.supervisor = TaskSupervisor(loop)
        self.scheduler = IntervalScheduler(
            state,
            self.bus,
            self.supervisor,
            session_factory=session_factory,
            status_indicator=status_indicator,
            loop=loop,
            clock=clock,
        )
        self.prompt = PromptCycle(state, self.bus, self.scheduler, session_factory=session_factory, loop=loop)
        self._dispatcher: Optional[asyncio.Task] = None
        self._delayed: Set[asyncio.TimerHandle] = set()
        self._register_handlers()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory

    def _register_handlers(self) -> None:
        self.bus.subscribe(PromptRequested, self._on_prompt_requested)
        self.bus.subscribe(UpdateDataRequested, self._on_update_data)
        self.bus.subscribe(CalendarScanRequested, self._on_calendar_scan)
        self.bus.subscribe(LunchBreakStarted, self._on_lunch_started)
        self.bus.subscribe(LunchBreakEnded, self._on_lunch_ended)
        self.bus.subscribe(TrackingStarted, self._on_tracking_started)
        self.bus.subscribe(TrackingEnded, self._on_tracking_ended)
        self.bus.subscribe(EndOfDayReached, self._on_end_of_day)
        self.bus.subscribe(TaskSelected, self._on_task_selected)
        self.bus.subscribe(PromptCancelled, self._on_prompt_finished)
        self.bus.subscribe(PromptTimedOut, self._on_prompt_finished)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        with db_session(self._session_factory) as db:
            catalog.ensure_lunch_task(db)
        if self._dispatcher is None:
            self._dispatcher = self.loop.create_task(self.bus.run(), name="tasktrack-events")
        self.scheduler.start()
        if self.state.jira.is_configured:
            await self.refresh_from_jira()
            if self.state.calendar.is_configured:
                await self.scan_calendar()
        logger.info("Tracker initialized")

    async def shutdown(self) -> None:
        self.prompt.cancel()
        for handle in list(self._delayed):
            handle.cancel()
        self._delayed.clear()
        self.scheduler.stop()
        try:
            with db_session(self._session_factory) as db:
                services.stop_tracking(db, self._clock())
        except Exception:
            logger.exception("Could not stop tracking on exit")
        try:
            self.state.persist()
        except OSError:
            logger.exception("Could not save settings on exit")
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        self.supervisor.cancel_all()
        logger.info("Tracker shut down")

    def request_prompt(self, reason: str = "manual") -> None:
        self.bus.emit(PromptRequested(reason=reason))

    def prompt_later(self, delay: float, reason: str) -> None:
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._delayed.discard(handle)
            self.request_prompt(reason)

        handle = self.loop.call_later(delay, fire)
        self._delayed.add(handle)

    def update_settings(self, updates: Dict[str, Any]) -> Set[Tuple[str, str]]:
        """Apply, save and push changed intervals to the running timers."""
        changed = self.state.apply(updates)
        if not changed:
            return changed
        self.state.persist()
        tracking = self.state.tracking
        if ("tracking", "prompt_interval_minutes") in changed:
            self.scheduler.set_prompt_interval(tracking.prompt_interval_minutes)
        if ("tracking", "update_interval_minutes") in changed:
            self.scheduler.set_update_interval(tracking.update_interval_minutes)
        if any(section == "calendar" for section, _ in changed):
            calendar = self.state.calendar
            self.scheduler.set_calendar_scan_interval(calendar.scan_interval_minutes if calendar.is_configured else 0)
        if self.scheduler.is_running and {
            ("tracking", "tracking_start_time"),
            ("tracking", "tracking_end_time"),
        } & changed:
            self.scheduler.check_tracking_status()
        return changed

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    async def refresh_from_jira(self) -> int:
        jira = self._jira_factory(self.state.jira)
        if not jira.is_configured:
            return 0
        projects = await self.loop.run_in_executor(None, jira.fetch_projects)
        with db_session(self._session_factory) as db:
            catalog.apply_remote_projects(db, projects)
            codes = [project.code for project in catalog.list_tracked_projects(db)]
        if not codes:
            return 0
        issues = await self.loop.run_in_executor(None, jira.fetch_tasks, codes)
        with db_session(self._session_factory) as db:
            count = catalog.apply_remote_tasks(db, issues)
        logger.info("Refreshed %s tasks from JIRA", count)
        return count

    async def scan_calendar(self) -> int:
        calendar_settings = self.state.calendar
        if not calendar_settings.is_configured:
            return 0
        source = self._calendar_factory(calendar_settings)
        jira = self._jira_factory(self.state.jira)
        start_day, end_day = default_scan_window(local_day(self._clock()))
        issues = await self.loop.run_in_executor(None, collect_calendar_issues, source, jira, start_day, end_day)
        with db_session(self._session_factory) as db:
            return apply_calendar_issues(db, issues)

    async def add_task_by_key(self, key: str) -> Optional[str]:
        """Look a JIRA key up and track it. ``None`` when JIRA does not know it."""
        key = (key or "").strip().upper()
        if not key:
            raise ValueError("A task key is required")
        jira = self._jira_factory(self.state.jira)
        issue = await self.loop.run_in_executor(None, jira.fetch_task, key)
        if issue is None:
            logger.info("Task %s not found or not accessible in JIRA", key)
            return None
        with db_session(self._session_factory) as db:
            return catalog.add_task_from_issue(db, issue).key

    def remove_task(self, task_id: int) -> str:
        with db_session(self._session_factory) as db:
            key = catalog.deactivate_task(db, task_id).key
        logger.info("Task %s removed from tracking", key)
        return key

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------
    def stop_tracking(self) -> bool:
        """Close the open entry on request. A running lunch break ends with it."""
        stopped = self._stop_tracking(self._clock())
        self.scheduler.clear_lunch_break()
        return stopped

    def _stop_tracking(self, ended_at: dt.datetime) -> bool:
        with db_session(self._session_factory) as db:
            return services.stop_tracking(db, ended_at) is not None

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def _on_prompt_requested(self, event: PromptRequested) -> None:
        if not self.prompt.open(event.reason):
            return
        if self.shell is not None:
            self.shell.show_prompt(self.prompt)

    async def _on_update_data(self, _event: UpdateDataRequested) -> None:
        await self.refresh_from_jira()

    async def _on_calendar_scan(self, _event: CalendarScanRequested) -> None:
        await self.scan_calendar()

    def _on_lunch_started(self, event: LunchBreakStarted) -> None:
        if self.shell is not None:
            self.shell.notify("Mittagspause", f"Mittagspause für {event.duration_minutes} Minuten gestartet.")

    def _on_lunch_ended(self, _event: LunchBreakEnded) -> None:
        self.prompt_later(PROMPT_DELAY_AFTER_LUNCH, "lunch_ended")

    def _on_tracking_started(self, _event: TrackingStarted) -> None:
        self.prompt_later(PROMPT_DELAY_AFTER_TRACKING_START, "tracking_started")

    def _on_tracking_ended(self, _event: TrackingEnded) -> None:
        ended_at = self._clock()
        self.supervisor.spawn("tracking-ended-stop", lambda: self._stop_tracking(ended_at))

    def _on_end_of_day(self, _event: EndOfDayReached) -> None:
        if self.shell is not None:
            self.shell.notify(
                "TaskTrack",
                "Ende des Erfassungstages erreicht. Die laufende Aufgabe wurde automatisch gestoppt.",
            )

    def _on_task_selected(self, event: TaskSelected) -> None:
        logger.info("Now tracking %s", event.task_key)

    def _on_prompt_finished(self, event) -> None:
        logger.debug("Prompt closed: %s", type(event).__name__)
