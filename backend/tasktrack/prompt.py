from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from . import catalog, services
from .database import SessionFactory, SessionLocal, db_session
from .events import EventBus, PromptCancelled, PromptTimedOut, TaskSelected
from .models import Project, Task
from .state import RuntimeState

logger = logging.getLogger(__name__)


class PromptState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"


class PromptResolution(str, enum.Enum):
    TASK_SELECTED = "task_selected"
    LUNCH_STARTED = "lunch_started"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class LunchStarter(Protocol):
    def start_lunch_break(self, duration_minutes: Optional[int] = None):
        ...

    def clear_lunch_break(self) -> bool:
        ...


@dataclass(frozen=True)
class ProjectChoice:
    id: int
    code: str
    name: str

    @classmethod
    def from_model(cls, project: Project) -> "ProjectChoice":
        return cls(id=project.id, code=project.code, name=project.name)


@dataclass(frozen=True)
class TaskChoice:
    id: int
    key: str
    summary: str
    project_id: int

    @classmethod
    def from_model(cls, task: Task) -> "TaskChoice":
        return cls(id=task.id, key=task.key, summary=task.summary, project_id=task.project_id)

    @property
    def label(self) -> str:
        return f"{self.key}: {self.summary}"


@dataclass
class PromptSelection:
    """What the prompt dialog currently shows."""

    reason: str = ""
    projects: List[ProjectChoice] = field(default_factory=list)
    tasks: List[TaskChoice] = field(default_factory=list)
    project_id: Optional[int] = None
    task_id: Optional[int] = None
    lunch_mode: bool = False
    lunch_duration_minutes: int = 0

    @property
    def selected_task(self) -> Optional[TaskChoice]:
        return next((task for task in self.tasks if task.id == self.task_id), None)


class PromptCycle:
    """Asks which task is being worked on and applies the answer.

    Idle until :meth:`open`; every resolution (task, lunch, cancel, timeout)
    cancels the timeout and returns to Idle.
    """

    def __init__(
        self,
        state: RuntimeState,
        bus: EventBus,
        lunch: LunchStarter,
        *,
        session_factory: SessionFactory = SessionLocal,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._state = state
        self._bus = bus
        self._lunch = lunch
        self._session_factory = session_factory
        self._loop = loop
        self._timeout: Optional[asyncio.TimerHandle] = None
        self.state = PromptState.IDLE
        self.selection = PromptSelection()
        self.last_resolution: Optional[PromptResolution] = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def is_awaiting(self) -> bool:
        return self.state is PromptState.AWAITING_RESPONSE

    @property
    def has_timeout(self) -> bool:
        return self._timeout is not None

    def open(self, reason: str = "manual") -> bool:
        if self.is_awaiting:
            logger.debug("Prompt already open, ignoring %s request", reason)
            return False
        tracking = self._state.tracking
        self.selection = PromptSelection(reason=reason, lunch_duration_minutes=tracking.default_lunch_duration_minutes)
        self._load_selection()
        self.state = PromptState.AWAITING_RESPONSE
        self._timeout = self.loop.call_later(tracking.prompt_timeout_seconds, self._on_timeout)
        logger.info("Prompt opened (%s)", reason)
        return True

    def _load_selection(self) -> None:
        with db_session(self._session_factory) as db:
            projects = catalog.list_tracked_projects(db)
            self.selection.projects = [ProjectChoice.from_model(project) for project in projects]
            last = services.get_last_entry(db)
            if last is None or last.task is None:
                return
            if last.task.project_id not in {project.id for project in projects}:
                return
            self.selection.project_id = last.task.project_id
            self.selection.tasks = [
                TaskChoice.from_model(task) for task in catalog.list_tasks_for_projects(db, [last.task.project_id])
            ]
            if any(task.id == last.task_id for task in self.selection.tasks):
                self.selection.task_id = last.task_id

    def choose_project(self, project_id: Optional[int]) -> List[TaskChoice]:
        self.selection.project_id = project_id
        if project_id is None:
            self.selection.tasks = []
        else:
            with db_session(self._session_factory) as db:
                self.selection.tasks = [
                    TaskChoice.from_model(task) for task in catalog.list_tasks_for_projects(db, [project_id])
                ]
        if self.selection.selected_task is None:
            self.selection.task_id = None
        return self.selection.tasks

    def choose_task(self, task_id: Optional[int]) -> None:
        self.selection.task_id = task_id

    def toggle_lunch_mode(self) -> bool:
        self.selection.lunch_mode = not self.selection.lunch_mode
        return self.selection.lunch_mode

    def can_confirm(self) -> bool:
        if self.selection.lunch_mode:
            return self.selection.lunch_duration_minutes > 0
        return self.selection.project_id is not None and self.selection.task_id is not None

    def confirm(self) -> Optional[PromptResolution]:
        """Apply the dialog's current selection."""
        if not self.is_awaiting or not self.can_confirm():
            return None
        if self.selection.lunch_mode:
            return self.start_lunch(self.selection.lunch_duration_minutes)
        return self.select_task(self.selection.task_id)

    def select_task(self, task_id: int) -> Optional[PromptResolution]:
        if not self.is_awaiting:
            return None
        with db_session(self._session_factory) as db:
            entry = services.switch_task(db, task_id)
            key = entry.task.key
        self._lunch.clear_lunch_break()
        self._cancel_timeout()
        return self._finish(PromptResolution.TASK_SELECTED, TaskSelected(task_id=task_id, task_key=key))

    def start_lunch(self, duration_minutes: Optional[int] = None) -> Optional[PromptResolution]:
        if not self.is_awaiting:
            return None
        minutes = duration_minutes if duration_minutes is not None else self.selection.lunch_duration_minutes
        if minutes <= 0:
            raise ValueError("Lunch duration must be positive")
        self._cancel_timeout()
        self._lunch.start_lunch_break(minutes)
        return self._finish(PromptResolution.LUNCH_STARTED)

    def submit_manual_task(self, project_id: Optional[int], summary: str) -> Optional[PromptResolution]:
        if not self.is_awaiting:
            return None
        if project_id is None:
            raise ValueError("A project is required for a manual task")
        if not (summary or "").strip():
            raise ValueError("Summary is required")
        with db_session(self._session_factory) as db:
            task = catalog.add_manual_task(db, project_id, summary)
            task_id = task.id
        return self.select_task(task_id)

    def cancel(self) -> Optional[PromptResolution]:
        if not self.is_awaiting:
            return None
        self._cancel_timeout()
        return self._finish(PromptResolution.CANCELLED, PromptCancelled())

    def _on_timeout(self) -> None:
        self._timeout = None
        if not self.is_awaiting:
            return
        task_id = self.selection.task_id
        if task_id is not None:
            logger.info("Prompt timed out, keeping the preselected task")
            try:
                self.select_task(task_id)
            except Exception:
                logger.exception("Could not confirm task %s after the prompt timed out", task_id)
                self._finish(PromptResolution.TIMED_OUT, PromptTimedOut())
            return
        logger.info("Prompt timed out without a selection")
        self._finish(PromptResolution.TIMED_OUT, PromptTimedOut())

    def _cancel_timeout(self) -> None:
        if self._timeout is None:
            return
        self._timeout.cancel()
        self._timeout = None

    def _finish(self, resolution: PromptResolution, event=None) -> PromptResolution:
        self.state = PromptState.IDLE
        self.last_resolution = resolution
        if event is not None:
            self._bus.emit(event)
        return resolution
