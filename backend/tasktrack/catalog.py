from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session, joinedload

from .errors import NotFound
from .jira import JiraIssue, JiraProjectInfo
from .models import Project, Task, utcnow

logger = logging.getLogger(__name__)

INTERNAL_PROJECT_CODE = "INTERNAL"
INTERNAL_PROJECT_NAME = "Internal Tasks"
LUNCH_TASK_KEY = "LUNCH"
LUNCH_TASK_SUMMARY = "Lunch Break"
HIDDEN_PROJECT_CODES = frozenset({"DEMO", "TEST"})
RESERVED_PROJECT_CODES = HIDDEN_PROJECT_CODES | {INTERNAL_PROJECT_CODE}


def _require_project(db: Session, project_id: int) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise NotFound(f"Project {project_id} does not exist")
    return project


def _project_by_code(db: Session, code: str) -> Optional[Project]:
    return db.query(Project).filter(Project.code == code).one_or_none()


def _task_by_key(db: Session, key: str) -> Optional[Task]:
    return db.query(Task).filter(Task.key == key).one_or_none()


def list_projects(db: Session) -> List[Project]:
    return db.query(Project).order_by(Project.code.asc()).all()


def list_selectable_projects(db: Session) -> List[Project]:
    """Projects offered in pickers; internal, demo and test projects never show up."""
    return (
        db.query(Project)
        .filter(Project.code.notin_(sorted(RESERVED_PROJECT_CODES)))
        .order_by(Project.name.asc(), Project.code.asc())
        .all()
    )


def list_tracked_projects(db: Session) -> List[Project]:
    return [project for project in list_selectable_projects(db) if project.is_tracked]


def set_project_tracked(db: Session, project_id: int, tracked: bool) -> Project:
    project = _require_project(db, project_id)
    project.is_tracked = bool(tracked)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def list_tasks_for_projects(db: Session, project_ids: Iterable[int]) -> List[Task]:
    ids = list(project_ids)
    if not ids:
        return []
    return (
        db.query(Task)
        .options(joinedload(Task.project))
        .filter(Task.project_id.in_(ids), Task.is_active.is_(True), Task.key != LUNCH_TASK_KEY)
        .order_by(Task.key.asc())
        .all()
    )


def get_task(db: Session, task_id: int) -> Optional[Task]:
    return db.query(Task).options(joinedload(Task.project)).filter(Task.id == task_id).one_or_none()


def get_task_by_key(db: Session, key: str) -> Optional[Task]:
    return (
        db.query(Task)
        .options(joinedload(Task.project))
        .filter(Task.key == key.strip().upper(), Task.is_active.is_(True))
        .one_or_none()
    )


def ensure_lunch_task(db: Session) -> Task:
    task = _task_by_key(db, LUNCH_TASK_KEY)
    if task is not None:
        if not task.is_active:
            task.is_active = True
            db.add(task)
            db.commit()
            db.refresh(task)
        return task

    project = _project_by_code(db, INTERNAL_PROJECT_CODE)
    if project is None:
        project = Project(code=INTERNAL_PROJECT_CODE, name=INTERNAL_PROJECT_NAME, is_tracked=False)
        db.add(project)
        db.flush()

    task = Task(key=LUNCH_TASK_KEY, summary=LUNCH_TASK_SUMMARY, project_id=project.id, is_active=True)
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info("Created internal lunch task")
    return task


def manual_task_key(code: str, now: Optional[dt.datetime] = None) -> str:
    stamp = (now or utcnow()).strftime("%Y%m%d%H%M%S%f")[:-3]
    return f"{code}-MAN-{stamp}"


def add_manual_task(db: Session, project_id: int, summary: str, now: Optional[dt.datetime] = None) -> Task:
    """Create a task that exists only locally, keyed ``<CODE>-MAN-<timestamp>``."""
    text = (summary or "").strip()
    if not text:
        raise ValueError("Summary is required")
    project = _require_project(db, project_id)
    key = manual_task_key(project.code, now)
    while _task_by_key(db, key) is not None:
        # Two manual tasks within the same millisecond.
        now = (now or utcnow()) + dt.timedelta(milliseconds=1)
        key = manual_task_key(project.code, now)
    task = Task(key=key, summary=text, project_id=project.id, is_active=True)
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info("Added manual task %s", key)
    return task


def _upsert_project(db: Session, code: str, name: str, *, tracked_if_new: bool) -> Project:
    project = _project_by_code(db, code)
    if project is None:
        project = Project(code=code, name=name or code, is_tracked=tracked_if_new)
        db.add(project)
        db.flush()
    elif name and project.name != name:
        project.name = name
        project.last_updated = utcnow()
    return project


def _apply_issue(task: Task, issue: JiraIssue) -> None:
    task.summary = issue.summary or task.summary
    task.status_name = issue.status_name
    task.status_category = issue.status_category
    task.is_active = True
    task.last_updated = utcnow()


def add_task_from_issue(db: Session, issue: JiraIssue) -> Task:
    existing = _task_by_key(db, issue.key)
    if existing is not None:
        if not existing.is_active:
            _apply_issue(existing, issue)
            db.add(existing)
            db.commit()
            db.refresh(existing)
        return existing

    project = _upsert_project(db, issue.project_code, issue.project_name, tracked_if_new=True)
    task = Task(
        key=issue.key,
        summary=issue.summary or issue.key,
        status_name=issue.status_name,
        status_category=issue.status_category,
        project_id=project.id,
        is_active=True,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info("Added task %s from JIRA", issue.key)
    return task


def deactivate_task(db: Session, task_id: int) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFound(f"Task {task_id} does not exist")
    task.is_active = False
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def apply_remote_projects(db: Session, projects: Iterable[JiraProjectInfo]) -> int:
    count = 0
    for info in projects:
        if info.code in RESERVED_PROJECT_CODES:
            continue
        _upsert_project(db, info.code, info.name, tracked_if_new=False)
        count += 1
    db.commit()
    return count


def apply_remote_tasks(db: Session, issues: Iterable[JiraIssue]) -> int:
    """Upsert fetched issues into tracked projects; issues of untracked projects are skipped."""
    tracked = {project.code: project for project in list_tracked_projects(db)}
    count = 0
    for issue in issues:
        project = tracked.get(issue.project_code)
        if project is None:
            continue
        task = _task_by_key(db, issue.key)
        if task is None:
            task = Task(key=issue.key, summary=issue.summary or issue.key, project_id=project.id)
            db.add(task)
        _apply_issue(task, issue)
        count += 1
    db.commit()
    return count
