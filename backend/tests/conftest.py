from __future__ import annotations

import datetime as dt
import itertools
from pathlib import Path
from typing import Any, Callable, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from tasktrack.config import settings
from tasktrack.database import init_db
from tasktrack.models import Project, Task
from tasktrack.state import RuntimeState
from tasktrack.utils import LOCAL_TZ


class FrozenClock:
    """Callable clock returning an aware local datetime that only moves when told to."""

    def __init__(self, start: dt.datetime) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def set(self, hour: int, minute: int, second: int = 0) -> dt.datetime:
        self.now = self.now.replace(hour=hour, minute=minute, second=second, microsecond=0)
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


class _ManualHandle:
    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: tuple) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualLoop:
    """Just enough of an event loop for timers: ``call_later``/``call_soon`` on virtual time.

    ``advance`` runs every due callback in order and moves the attached clock along.
    """

    def __init__(self, clock: FrozenClock) -> None:
        self.clock = clock
        self._elapsed = 0.0
        self._seq = itertools.count()
        self._scheduled: List[_ManualHandle] = []

    def time(self) -> float:
        return self._elapsed

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _ManualHandle:
        handle = _ManualHandle(self._elapsed + max(float(delay), 0.0), next(self._seq), callback, args)
        self._scheduled.append(handle)
        return handle

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> _ManualHandle:
        return self.call_later(0, callback, *args)

    @property
    def pending(self) -> List[_ManualHandle]:
        return [handle for handle in self._scheduled if not handle.cancelled]

    def run_ready(self) -> None:
        self.advance(0)

    def advance(self, seconds: float) -> None:
        target = self._elapsed + seconds
        while True:
            due = [handle for handle in self._scheduled if not handle.cancelled and handle.when <= target]
            if not due:
                break
            handle = min(due, key=lambda item: (item.when, item.seq))
            self._scheduled.remove(handle)
            step = handle.when - self._elapsed
            if step > 0:
                self.clock.advance(seconds=step)
                self._elapsed = handle.when
            handle.callback(*handle.args)
        rest = target - self._elapsed
        if rest > 0:
            self.clock.advance(seconds=rest)
            self._elapsed = target
        self._scheduled = [handle for handle in self._scheduled if not handle.cancelled]


@pytest.fixture()
def engine(tmp_path: Path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def session(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def sample_day() -> dt.date:
    # A Monday well away from any DST switch.
    return dt.date(2024, 3, 4)


@pytest.fixture()
def clock(sample_day: dt.date) -> FrozenClock:
    return FrozenClock(dt.datetime.combine(sample_day, dt.time(10, 0), tzinfo=LOCAL_TZ))


@pytest.fixture()
def manual_loop(clock: FrozenClock) -> ManualLoop:
    return ManualLoop(clock)


@pytest.fixture()
def runtime_state(tmp_path: Path) -> RuntimeState:
    return RuntimeState(settings, path=tmp_path / "appsettings.json")


@pytest.fixture()
def jira_state(runtime_state: RuntimeState) -> RuntimeState:
    runtime_state.apply(
        {"jira": {"server_url": "https://example.atlassian.net", "email": "dev@example.com", "api_token": "secret"}}
    )
    return runtime_state


@pytest.fixture()
def make_task(session: Session) -> Callable[..., Task]:
    def factory(key: str, summary: Optional[str] = None, *, project_code: Optional[str] = None, tracked: bool = True) -> Task:
        code = project_code or key.split("-")[0]
        project = session.query(Project).filter(Project.code == code).one_or_none()
        if project is None:
            project = Project(code=code, name=f"Project {code}", is_tracked=tracked)
            session.add(project)
            session.flush()
        task = Task(key=key, summary=summary or f"Work on {key}", project_id=project.id, is_active=True)
        session.add(task)
        session.commit()
        session.refresh(task)
        return task

    return factory
