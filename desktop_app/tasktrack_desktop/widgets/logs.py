"""Anzeige der gespeicherten Protokolleinträge."""

from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QDate
from PySide6.QtWidgets import (QComboBox, QDateEdit, QFileDialog, QHBoxLayout,
                               QLabel, QLineEdit, QMessageBox, QPushButton,
                               QTableWidget, QTableWidgetItem, QVBoxLayout,
                               QWidget)

from tasktrack.application import TrackerApplication
from tasktrack.config import settings
from tasktrack.database import db_session
from tasktrack.logs import export_log_entries_csv, list_log_entries
from tasktrack.utils import LOCAL_TZ, to_local

LEVELS = ["", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogViewer(QWidget):
    """Gefilterte Liste der Protokolleinträge, neueste zuerst."""

    def __init__(self, tracker: TrackerApplication, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.tracker = tracker
        self.setWindowTitle("TaskTrack – Protokoll")
        self.resize(960, 520)

        self.since_edit = QDateEdit(self)
        self.since_edit.setCalendarPopup(True)
        self.since_edit.setDate(QDate.currentDate().addDays(-7))
        self.level_combo = QComboBox()
        for level in LEVELS:
            self.level_combo.addItem(level or "Alle", level)
        self.source_input = QLineEdit()
        self.source_input.setPlaceholderText("Quelle, z. B. tasktrack.jira")
        self.text_input = QLineEdit()
        self.text_input.setPlaceholderText("Suchtext")

        self.refresh_button = QPushButton("Filtern")
        self.export_button = QPushButton("Als CSV exportieren")
        self.refresh_button.clicked.connect(self.refresh)
        self.export_button.clicked.connect(self._handle_export)
        self.text_input.returnPressed.connect(self.refresh)

        self.table = QTableWidget(0, 4)
        self.table.setHorizontalHeaderLabels(["Zeit", "Stufe", "Quelle", "Meldung"])
        self.table.setEditTriggers(QTableWidget.NoEditTriggers)
        self.table.horizontalHeader().setStretchLastSection(True)
        self.table.verticalHeader().setVisible(False)
        self.table.setSelectionBehavior(QTableWidget.SelectRows)

        filter_layout = QHBoxLayout()
        filter_layout.addWidget(QLabel("Seit:"))
        filter_layout.addWidget(self.since_edit)
        filter_layout.addWidget(self.level_combo)
        filter_layout.addWidget(self.source_input)
        filter_layout.addWidget(self.text_input, stretch=1)
        filter_layout.addWidget(self.refresh_button)
        filter_layout.addWidget(self.export_button)

        layout = QVBoxLayout(self)
        layout.addLayout(filter_layout)
        layout.addWidget(self.table)

    # ------------------------------------------------------------------
    def _filters(self) -> dict:
        since_day = self.since_edit.date().toPython()
        return {
            "since": dt.datetime.combine(since_day, dt.time.min, tzinfo=LOCAL_TZ),
            "level": self.level_combo.currentData() or None,
            "source": self.source_input.text().strip() or None,
            "text": self.text_input.text().strip() or None,
        }

    def refresh(self) -> None:
        with db_session(self.tracker.session_factory) as db:
            rows = [
                (
                    to_local(entry.created_at).strftime("%d.%m.%Y %H:%M:%S"),
                    entry.level,
                    entry.source,
                    entry.message,
                    entry.details or "",
                )
                for entry in list_log_entries(db, **self._filters())
            ]

        self.table.setRowCount(len(rows))
        for row, (created, level, source, message, details) in enumerate(rows):
            for column, value in enumerate((created, level, source, message)):
                item = QTableWidgetItem(value)
                if details:
                    item.setToolTip(details)
                self.table.setItem(row, column, item)
        self.table.resizeColumnsToContents()

    def _handle_export(self) -> None:
        default_path = settings.export_dir / f"TaskTrack_Log_{dt.date.today().isoformat()}.csv"
        filename, _ = QFileDialog.getSaveFileName(self, "Protokoll exportieren", str(default_path), "CSV (*.csv)")
        if not filename:
            return
        try:
            with db_session(self.tracker.session_factory) as db:
                count = export_log_entries_csv(list_log_entries(db, **self._filters()), Path(filename))
        except OSError as exc:
            QMessageBox.warning(self, "Export fehlgeschlagen", str(exc))
            return
        QMessageBox.information(self, "Export", f"{count} Einträge exportiert.")


__all__ = ["LogViewer"]
