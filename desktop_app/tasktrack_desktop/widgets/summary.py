"""Tages- und Wochenzusammenfassung mit Export."""

from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import List, Optional

from PySide6.QtCore import QDate, Qt
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (QComboBox, QDateEdit, QFileDialog, QHBoxLayout,
                               QLabel, QMessageBox, QPushButton, QTableWidget,
                               QTableWidgetItem, QVBoxLayout, QWidget)

from tasktrack.application import TrackerApplication
from tasktrack.config import settings
from tasktrack.database import db_session
from tasktrack.schemas import DailySummary
from tasktrack.summaries import EXPORT_FORMATS, export_entries, summarize_day, summarize_week
from tasktrack.utils import week_bounds

MODE_DAY = "day"
MODE_WEEK = "week"

FILE_FILTERS = {
    "csv": "CSV (*.csv)",
    "xlsx": "Excel (*.xlsx)",
    "pdf": "PDF (*.pdf)",
}


class SummaryWindow(QWidget):
    """Zusammenfassung der erfassten Zeit je Aufgabe."""

    def __init__(self, tracker: TrackerApplication, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.tracker = tracker
        self.setWindowTitle("TaskTrack – Zusammenfassung")
        self.resize(820, 520)

        self.mode_combo = QComboBox()
        self.mode_combo.addItem("Tag", MODE_DAY)
        self.mode_combo.addItem("Woche", MODE_WEEK)
        self.mode_combo.currentIndexChanged.connect(self.refresh)

        self.date_edit = QDateEdit(self)
        self.date_edit.setCalendarPopup(True)
        self.date_edit.setDate(QDate.currentDate())
        self.date_edit.dateChanged.connect(self.refresh)

        self.total_label = QLabel("00:00")
        font = QFont()
        font.setPointSize(16)
        font.setBold(True)
        self.total_label.setFont(font)

        self.table = QTableWidget(0, 5)
        self.table.setHorizontalHeaderLabels(["Tag", "Aufgabe", "Zusammenfassung", "Projekt", "Zeit"])
        self.table.setEditTriggers(QTableWidget.NoEditTriggers)
        self.table.horizontalHeader().setStretchLastSection(True)
        self.table.verticalHeader().setVisible(False)

        self.refresh_button = QPushButton("Aktualisieren")
        self.refresh_button.clicked.connect(self.refresh)

        header_layout = QHBoxLayout()
        header_layout.addWidget(self.mode_combo)
        header_layout.addWidget(self.date_edit)
        header_layout.addStretch(1)
        header_layout.addWidget(QLabel("Gesamt:"))
        header_layout.addWidget(self.total_label)
        header_layout.addWidget(self.refresh_button)

        export_layout = QHBoxLayout()
        export_layout.addStretch(1)
        for export_format in EXPORT_FORMATS:
            button = QPushButton(f"Export {export_format.upper()}")
            button.clicked.connect(lambda _checked=False, fmt=export_format: self._handle_export(fmt))
            export_layout.addWidget(button)

        layout = QVBoxLayout(self)
        layout.addLayout(header_layout)
        layout.addWidget(self.table)
        layout.addLayout(export_layout)

    # ------------------------------------------------------------------
    def mode(self) -> str:
        return self.mode_combo.currentData()

    def selected_range(self) -> tuple[dt.date, dt.date]:
        day = self.date_edit.date().toPython()
        if self.mode() == MODE_WEEK:
            return week_bounds(day)
        return day, day

    def refresh(self) -> None:
        """Berechnet die Zusammenfassung für Tag bzw. Woche neu."""

        day = self.date_edit.date().toPython()
        with db_session(self.tracker.session_factory) as db:
            if self.mode() == MODE_WEEK:
                weekly = summarize_week(db, day)
                days: List[DailySummary] = [summary for summary in weekly.days if summary.tasks]
                total = weekly.total_display
            else:
                daily = summarize_day(db, day)
                days = [daily]
                total = daily.total_display

        rows = [(summary.day, task) for summary in days for task in summary.tasks]
        self.table.setRowCount(len(rows))
        for row, (summary_day, task) in enumerate(rows):
            values = [
                summary_day.strftime("%a %d.%m."),
                task.task_key,
                task.task_summary,
                task.project_name,
                task.time_spent_display,
            ]
            for column, value in enumerate(values):
                item = QTableWidgetItem(value)
                if column == 4:
                    item.setTextAlignment(Qt.AlignRight | Qt.AlignVCenter)
                self.table.setItem(row, column, item)
        self.table.resizeColumnsToContents()
        self.total_label.setText(total)

    # ------------------------------------------------------------------
    def _handle_export(self, export_format: str) -> None:
        start_day, end_day = self.selected_range()
        default_path = settings.export_dir / f"TimeTracking_{start_day.isoformat()}_{end_day.isoformat()}.{export_format}"
        filename, _ = QFileDialog.getSaveFileName(self, "Export speichern", str(default_path), FILE_FILTERS[export_format])
        if not filename:
            return
        try:
            with db_session(self.tracker.session_factory) as db:
                path = export_entries(db, start_day, end_day, export_format, Path(filename))
        except (OSError, ValueError) as exc:
            QMessageBox.warning(self, "Export fehlgeschlagen", str(exc))
            return
        QMessageBox.information(self, "Export", f"Export gespeichert unter {path}")


__all__ = ["SummaryWindow"]
