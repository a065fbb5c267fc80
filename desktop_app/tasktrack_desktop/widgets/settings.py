"""Einstellungsdialog."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from PySide6.QtWidgets import (QCheckBox, QDialog, QDialogButtonBox,
                               QFormLayout, QGroupBox, QHBoxLayout, QLabel,
                               QLineEdit, QListWidget, QListWidgetItem,
                               QMessageBox, QPushButton, QSpinBox, QVBoxLayout,
                               QWidget)

from PySide6.QtCore import Qt

from tasktrack import catalog
from tasktrack.application import TrackerApplication
from tasktrack.database import db_session
from tasktrack.jira import JiraClient
from tasktrack.schemas import SECRET_UNCHANGED, JiraSettings

logger = logging.getLogger(__name__)


def _spin(minimum: int, maximum: int, suffix: str) -> QSpinBox:
    spin = QSpinBox()
    spin.setRange(minimum, maximum)
    spin.setSuffix(suffix)
    return spin


def _secret_field() -> QLineEdit:
    field = QLineEdit()
    field.setEchoMode(QLineEdit.Password)
    return field


class SettingsDialog(QDialog):
    """Erfassungszeiten, JIRA-Zugang, Kalender und verfolgte Projekte."""

    def __init__(self, tracker: TrackerApplication, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.tracker = tracker
        self.setWindowTitle("TaskTrack – Einstellungen")
        self.setMinimumWidth(520)

        self.prompt_interval = _spin(1, 480, " Min")
        self.update_interval = _spin(1, 1440, " Min")
        self.prompt_timeout = _spin(5, 600, " s")
        self.lunch_duration = _spin(1, 240, " Min")
        self.start_time = QLineEdit()
        self.end_time = QLineEdit()
        self.start_time.setPlaceholderText("09:00")
        self.end_time.setPlaceholderText("17:30")

        self.jira_url = QLineEdit()
        self.jira_email = QLineEdit()
        self.jira_token = _secret_field()
        self.test_button = QPushButton("Verbindung testen")
        self.test_label = QLabel()
        self.test_button.clicked.connect(self._handle_test_connection)

        self.calendar_enabled = QCheckBox("Kalender nach Vorgängen durchsuchen")
        self.calendar_url = QLineEdit()
        self.calendar_url.setPlaceholderText("https://…/caldav/")
        self.calendar_user = QLineEdit()
        self.calendar_password = _secret_field()
        self.calendar_interval = _spin(0, 1440, " Min")
        self.calendar_interval.setSpecialValueText("aus")

        self.project_list = QListWidget()

        buttons = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._handle_save)
        buttons.rejected.connect(self.reject)

        layout = QVBoxLayout(self)
        layout.addWidget(self._build_tracking_group())
        layout.addWidget(self._build_jira_group())
        layout.addWidget(self._build_calendar_group())
        layout.addWidget(self._build_projects_group(), stretch=1)
        layout.addWidget(buttons)

    # ------------------------------------------------------------------
    def _build_tracking_group(self) -> QGroupBox:
        group = QGroupBox("Erfassung")
        form = QFormLayout(group)
        form.addRow("Beginn", self.start_time)
        form.addRow("Ende", self.end_time)
        form.addRow("Abfrage alle", self.prompt_interval)
        form.addRow("Antwortzeit", self.prompt_timeout)
        form.addRow("Aktualisierung alle", self.update_interval)
        form.addRow("Mittagspause", self.lunch_duration)
        return group

    def _build_jira_group(self) -> QGroupBox:
        group = QGroupBox("JIRA")
        form = QFormLayout(group)
        form.addRow("Server", self.jira_url)
        form.addRow("E-Mail", self.jira_email)
        form.addRow("API-Token", self.jira_token)
        row = QHBoxLayout()
        row.addWidget(self.test_button)
        row.addWidget(self.test_label, stretch=1)
        form.addRow(row)
        return group

    def _build_calendar_group(self) -> QGroupBox:
        group = QGroupBox("Kalender (CalDAV)")
        form = QFormLayout(group)
        form.addRow(self.calendar_enabled)
        form.addRow("URL", self.calendar_url)
        form.addRow("Benutzer", self.calendar_user)
        form.addRow("Passwort", self.calendar_password)
        form.addRow("Durchsuchen alle", self.calendar_interval)
        return group

    def _build_projects_group(self) -> QGroupBox:
        group = QGroupBox("Verfolgte Projekte")
        layout = QVBoxLayout(group)
        layout.addWidget(self.project_list)
        return group

    # ------------------------------------------------------------------
    def load(self) -> None:
        """Übernimmt die aktuellen Einstellungen in das Formular."""

        snapshot = self.tracker.state.snapshot()
        tracking = snapshot["tracking"]
        self.start_time.setText(tracking["tracking_start_time"])
        self.end_time.setText(tracking["tracking_end_time"])
        self.prompt_interval.setValue(tracking["prompt_interval_minutes"])
        self.prompt_timeout.setValue(tracking["prompt_timeout_seconds"])
        self.update_interval.setValue(tracking["update_interval_minutes"])
        self.lunch_duration.setValue(tracking["default_lunch_duration_minutes"])

        jira = snapshot["jira"]
        self.jira_url.setText(jira["server_url"])
        self.jira_email.setText(jira["email"])
        self.jira_token.clear()
        self.jira_token.setPlaceholderText("gespeichert – leer lassen für unverändert" if jira["api_token_set"] else "")
        self.test_label.clear()

        calendar = snapshot["calendar"]
        self.calendar_enabled.setChecked(calendar["enabled"])
        self.calendar_url.setText(calendar["url"])
        self.calendar_user.setText(calendar["username"])
        self.calendar_password.clear()
        self.calendar_password.setPlaceholderText(
            "gespeichert – leer lassen für unverändert" if calendar["password_set"] else ""
        )
        self.calendar_interval.setValue(calendar["scan_interval_minutes"])

        self.project_list.clear()
        with db_session(self.tracker.session_factory) as db:
            for project in catalog.list_selectable_projects(db):
                item = QListWidgetItem(f"{project.name} ({project.code})")
                item.setData(Qt.UserRole, project.id)
                item.setFlags(item.flags() | Qt.ItemIsUserCheckable)
                item.setCheckState(Qt.Checked if project.is_tracked else Qt.Unchecked)
                self.project_list.addItem(item)

    def collect(self) -> Dict[str, Any]:
        """Liest das Formular als Teil-Update für :meth:`RuntimeState.apply`."""

        return {
            "tracking": {
                "tracking_start_time": self.start_time.text(),
                "tracking_end_time": self.end_time.text(),
                "prompt_interval_minutes": self.prompt_interval.value(),
                "prompt_timeout_seconds": self.prompt_timeout.value(),
                "update_interval_minutes": self.update_interval.value(),
                "default_lunch_duration_minutes": self.lunch_duration.value(),
            },
            "jira": {
                "server_url": self.jira_url.text(),
                "email": self.jira_email.text(),
                "api_token": self.jira_token.text() or SECRET_UNCHANGED,
            },
            "calendar": {
                "enabled": self.calendar_enabled.isChecked(),
                "url": self.calendar_url.text(),
                "username": self.calendar_user.text(),
                "password": self.calendar_password.text() or SECRET_UNCHANGED,
                "scan_interval_minutes": self.calendar_interval.value(),
            },
        }

    # ------------------------------------------------------------------
    def _handle_save(self) -> None:
        try:
            self.tracker.update_settings(self.collect())
        except ValidationError as exc:
            QMessageBox.warning(self, "Ungültige Einstellungen", str(exc))
            return
        except OSError as exc:
            QMessageBox.warning(self, "Speichern fehlgeschlagen", str(exc))
            return

        with db_session(self.tracker.session_factory) as db:
            for row in range(self.project_list.count()):
                item = self.project_list.item(row)
                catalog.set_project_tracked(db, item.data(Qt.UserRole), item.checkState() == Qt.Checked)
        self.accept()

    def _handle_test_connection(self) -> None:
        token = self.jira_token.text() or self.tracker.state.jira.api_token
        jira_settings = JiraSettings(server_url=self.jira_url.text(), email=self.jira_email.text(), api_token=token)
        self.test_button.setEnabled(False)
        self.test_label.setText("Prüfe …")
        self.tracker.supervisor.spawn("jira-connection-test", self._test_connection(jira_settings))

    async def _test_connection(self, jira_settings: JiraSettings) -> None:
        client = JiraClient(jira_settings)
        try:
            ok = await self.tracker.loop.run_in_executor(None, client.test_connection)
        finally:
            self.test_button.setEnabled(True)
        logger.info("JIRA connection test: %s", "ok" if ok else "failed")
        self.test_label.setText("Verbindung erfolgreich" if ok else "Verbindung fehlgeschlagen")


__all__ = ["SettingsDialog"]
