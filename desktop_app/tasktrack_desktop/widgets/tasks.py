"""Verwaltung der verfolgten JIRA-Aufgaben."""

from __future__ import annotations

import logging
from typing import List, Optional

from PySide6.QtCore import Qt
from PySide6.QtWidgets import (QHBoxLayout, QLabel, QLineEdit, QMessageBox,
                               QPushButton, QTableWidget, QTableWidgetItem,
                               QVBoxLayout, QWidget)

from tasktrack import catalog
from tasktrack.application import TrackerApplication
from tasktrack.database import db_session
from tasktrack.errors import TaskTrackError
from tasktrack.utils import to_local

logger = logging.getLogger(__name__)


class TaskManager(QWidget):
    """Aufgaben der ausgewählten Projekte anzeigen, per Schlüssel hinzufügen und entfernen."""

    def __init__(self, tracker: TrackerApplication, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.tracker = tracker
        self.setWindowTitle("TaskTrack – Aufgaben")
        self.resize(760, 480)

        self.key_input = QLineEdit()
        self.key_input.setPlaceholderText("Vorgangsschlüssel, z. B. ABC-123")
        self.add_button = QPushButton("Hinzufügen")
        self.remove_button = QPushButton("Entfernen")
        self.refresh_button = QPushButton("Aus JIRA aktualisieren")
        self.status_label = QLabel()

        self.add_button.clicked.connect(self._handle_add)
        self.key_input.returnPressed.connect(self._handle_add)
        self.remove_button.clicked.connect(self._handle_remove)
        self.refresh_button.clicked.connect(self._handle_refresh)

        self.table = QTableWidget(0, 4)
        self.table.setHorizontalHeaderLabels(["Projekt", "Schlüssel", "Zusammenfassung", "Aktualisiert"])
        self.table.setEditTriggers(QTableWidget.NoEditTriggers)
        self.table.horizontalHeader().setStretchLastSection(True)
        self.table.verticalHeader().setVisible(False)
        self.table.setSelectionBehavior(QTableWidget.SelectRows)

        add_layout = QHBoxLayout()
        add_layout.addWidget(self.key_input, stretch=1)
        add_layout.addWidget(self.add_button)

        button_layout = QHBoxLayout()
        button_layout.addWidget(self.status_label, stretch=1)
        button_layout.addWidget(self.refresh_button)
        button_layout.addWidget(self.remove_button)

        layout = QVBoxLayout(self)
        layout.addLayout(add_layout)
        layout.addWidget(self.table)
        layout.addLayout(button_layout)

    # ------------------------------------------------------------------
    def refresh(self) -> None:
        with db_session(self.tracker.session_factory) as db:
            project_ids = [project.id for project in catalog.list_tracked_projects(db)]
            rows = [
                (task.id, task.project.name, task.key, task.summary, to_local(task.last_updated).strftime("%d.%m.%Y %H:%M"))
                for task in catalog.list_tasks_for_projects(db, project_ids)
            ]

        self.table.setRowCount(len(rows))
        for row, (task_id, project, key, summary, updated) in enumerate(rows):
            for column, value in enumerate((project, key, summary, updated)):
                item = QTableWidgetItem(value)
                item.setData(Qt.UserRole, task_id)
                self.table.setItem(row, column, item)
        self.table.resizeColumnsToContents()
        if project_ids:
            self.status_label.setText(f"{len(rows)} Aufgaben")
        else:
            self.status_label.setText("Keine Projekte ausgewählt. Bitte zuerst in den Einstellungen wählen.")

    def _selected_task_ids(self) -> List[int]:
        rows = sorted({index.row() for index in self.table.selectedIndexes()})
        return [self.table.item(row, 0).data(Qt.UserRole) for row in rows]

    # ------------------------------------------------------------------
    def _handle_add(self) -> None:
        key = self.key_input.text().strip().upper()
        if not key:
            return
        self._set_busy(True, f"Füge {key} hinzu …")
        self.tracker.supervisor.spawn("task-add", self._add_task(key))

    async def _add_task(self, key: str) -> None:
        try:
            added = await self.tracker.add_task_by_key(key)
        except TaskTrackError as exc:
            logger.warning("Adding task %s failed: %s", key, exc)
            QMessageBox.warning(self, "Aufgabe hinzufügen", str(exc))
            self._set_busy(False, "")
            return
        if added is None:
            self._set_busy(False, "")
            QMessageBox.warning(
                self, "Aufgabe hinzufügen", f"Vorgang {key} wurde nicht gefunden oder ist nicht zugänglich."
            )
            return
        self.key_input.clear()
        self.refresh()
        self._set_busy(False, f"{added} hinzugefügt")

    def _handle_remove(self) -> None:
        task_ids = self._selected_task_ids()
        if not task_ids:
            return
        answer = QMessageBox.question(
            self, "Aufgaben entfernen", f"{len(task_ids)} Aufgabe(n) nicht mehr verfolgen?"
        )
        if answer != QMessageBox.Yes:
            return
        try:
            for task_id in task_ids:
                self.tracker.remove_task(task_id)
        except TaskTrackError as exc:
            QMessageBox.warning(self, "Aufgaben entfernen", str(exc))
        self.refresh()

    def _handle_refresh(self) -> None:
        if not self.tracker.state.jira.is_configured:
            QMessageBox.warning(self, "JIRA", "JIRA ist noch nicht eingerichtet. Bitte die Einstellungen öffnen.")
            return
        self._set_busy(True, "Aktualisiere aus JIRA …")
        self.tracker.supervisor.spawn("task-refresh", self._refresh_from_jira())

    async def _refresh_from_jira(self) -> None:
        try:
            count = await self.tracker.refresh_from_jira()
        except TaskTrackError as exc:
            logger.warning("Refreshing tasks failed: %s", exc)
            QMessageBox.warning(self, "JIRA", str(exc))
            self._set_busy(False, "")
            return
        self.refresh()
        self._set_busy(False, f"{count} Aufgaben aus JIRA aktualisiert")

    def _set_busy(self, busy: bool, message: str) -> None:
        self.add_button.setEnabled(not busy)
        self.refresh_button.setEnabled(not busy)
        if message:
            self.status_label.setText(message)


__all__ = ["TaskManager"]
