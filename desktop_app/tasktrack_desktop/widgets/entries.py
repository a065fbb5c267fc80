"""Bearbeitung der Zeiteinträge eines Tages."""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from PySide6.QtCore import QDate, QTime, QTimer, Qt
from PySide6.QtWidgets import (QApplication, QDateEdit, QHBoxLayout, QLabel,
                               QLineEdit, QMessageBox, QPushButton,
                               QTableWidget, QTableWidgetItem, QTimeEdit,
                               QVBoxLayout, QWidget)

from tasktrack import catalog, services
from tasktrack.application import TrackerApplication
from tasktrack.database import db_session
from tasktrack.errors import NotFound, TaskTrackError
from tasktrack.models import TimeEntry, task_label
from tasktrack.supervisor import EditGuard
from tasktrack.utils import LOCAL_TZ, format_duration, local_now, parse_time_string, to_local

logger = logging.getLogger(__name__)

COL_START, COL_END, COL_DURATION, COL_TASK, COL_COMMENT = range(5)


class EntryEditor(QWidget):
    """Tabelle der Zeiteinträge mit Bearbeitung direkt in den Zellen.

    Eine Änderung wird sofort gespeichert. Solange eine Änderung gespeichert
    wird, sperrt ein :class:`EditGuard` weitere Bearbeitungen; abgelehnte oder
    fehlgeschlagene Änderungen werden mit einem Signalton zurückgesetzt.
    """

    def __init__(self, tracker: TrackerApplication, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.tracker = tracker
        self.guard = EditGuard()
        self._entry_ids: List[int] = []
        self._populating = False

        self.setWindowTitle("TaskTrack – Zeiteinträge")
        self.resize(900, 480)

        self.date_edit = QDateEdit(self)
        self.date_edit.setCalendarPopup(True)
        self.date_edit.setDate(QDate.currentDate())
        self.date_edit.dateChanged.connect(self.refresh)

        self.refresh_button = QPushButton("Aktualisieren")
        self.delete_button = QPushButton("Eintrag löschen")
        self.refresh_button.clicked.connect(self.refresh)
        self.delete_button.clicked.connect(self._handle_delete)

        self.table = QTableWidget(0, 5)
        self.table.setHorizontalHeaderLabels(["Start", "Ende", "Dauer", "Aufgabe", "Kommentar"])
        self.table.setEditTriggers(QTableWidget.DoubleClicked | QTableWidget.SelectedClicked | QTableWidget.EditKeyPressed)
        self.table.horizontalHeader().setStretchLastSection(True)
        self.table.verticalHeader().setVisible(False)
        self.table.setSelectionBehavior(QTableWidget.SelectRows)
        self.table.itemChanged.connect(self._handle_item_changed)

        self.new_task_input = QLineEdit()
        self.new_task_input.setPlaceholderText("Vorgang, z. B. ABC-123")
        self.new_start_edit = QTimeEdit(QTime(9, 0))
        self.new_end_edit = QTimeEdit(QTime(10, 0))
        self.new_comment_input = QLineEdit()
        self.new_comment_input.setPlaceholderText("Kommentar")
        self.add_button = QPushButton("Hinzufügen")
        self.add_button.clicked.connect(self._handle_add)

        header_layout = QHBoxLayout()
        header_layout.addWidget(QLabel("Datum:"))
        header_layout.addWidget(self.date_edit)
        header_layout.addStretch(1)
        header_layout.addWidget(self.delete_button)
        header_layout.addWidget(self.refresh_button)

        add_layout = QHBoxLayout()
        add_layout.addWidget(self.new_task_input)
        add_layout.addWidget(self.new_start_edit)
        add_layout.addWidget(QLabel("bis"))
        add_layout.addWidget(self.new_end_edit)
        add_layout.addWidget(self.new_comment_input, stretch=1)
        add_layout.addWidget(self.add_button)

        layout = QVBoxLayout(self)
        layout.addLayout(header_layout)
        layout.addWidget(self.table)
        layout.addLayout(add_layout)

    # ------------------------------------------------------------------
    def selected_day(self) -> dt.date:
        return self.date_edit.date().toPython()

    def refresh(self) -> None:
        """Lädt die Einträge des gewählten Tages."""

        now = local_now()
        with db_session(self.tracker.session_factory) as db:
            entries = services.list_entries_for_day(db, self.selected_day())
            rows = [self._row_texts(entry, now) for entry in entries]
            self._entry_ids = [entry.id for entry in entries]

        self._populating = True
        try:
            self.table.setRowCount(len(rows))
            for row, (texts, tooltip) in enumerate(rows):
                for column, text in enumerate(texts):
                    item = QTableWidgetItem(text)
                    if column == COL_DURATION:
                        item.setFlags(Qt.ItemIsSelectable | Qt.ItemIsEnabled)
                    if column == COL_TASK:
                        item.setToolTip(tooltip)
                    self.table.setItem(row, column, item)
            self.table.resizeColumnsToContents()
        finally:
            self._populating = False

    @staticmethod
    def _row_texts(entry: TimeEntry, now: dt.datetime):
        start = to_local(entry.start_time).strftime("%H:%M")
        end = to_local(entry.end_time).strftime("%H:%M") if entry.end_time is not None else ""
        duration = format_duration(entry.duration_at(now))
        key = entry.task.key if entry.task is not None else ""
        return [start, end, duration, key, entry.comment or ""], task_label(entry.task)

    # ------------------------------------------------------------------
    def _handle_item_changed(self, item: QTableWidgetItem) -> None:
        if self._populating:
            return
        if not self.guard.acquire():
            QApplication.beep()
            QTimer.singleShot(0, self.refresh)
            return
        try:
            self._save_cell(item.row(), item.column(), item.text().strip())
        except (TaskTrackError, ValueError) as exc:
            logger.warning("Edit of time entry rejected: %s", exc)
            QApplication.beep()
        finally:
            self.guard.release()
            QTimer.singleShot(0, self.refresh)

    def _save_cell(self, row: int, column: int, text: str) -> None:
        entry_id = self._entry_ids[row]
        with db_session(self.tracker.session_factory) as db:
            if column == COL_COMMENT:
                services.update_entry_comment(db, entry_id, text)
                return
            if column == COL_TASK:
                task = catalog.get_task_by_key(db, text)
                if task is None:
                    raise NotFound(f"Unknown task {text}")
                services.update_entry_task(db, entry_id, task.id)
                return
            entry = services.get_entry(db, entry_id)
            if entry is None:
                raise NotFound(f"Time entry {entry_id} not found")
            start = to_local(entry.start_time)
            end = to_local(entry.end_time) if entry.end_time is not None else None
            if column == COL_START:
                start = self._on_day(start.date(), text)
            elif column == COL_END:
                end = self._on_day(start.date(), text) if text else None
            services.update_entry_times(db, entry_id, start, end)

    @staticmethod
    def _on_day(day: dt.date, text: str) -> dt.datetime:
        return dt.datetime.combine(day, parse_time_string(text), tzinfo=LOCAL_TZ)

    # ------------------------------------------------------------------
    def _handle_add(self) -> None:
        day = self.selected_day()
        start = dt.datetime.combine(day, self.new_start_edit.time().toPython(), tzinfo=LOCAL_TZ)
        end = dt.datetime.combine(day, self.new_end_edit.time().toPython(), tzinfo=LOCAL_TZ)
        key = self.new_task_input.text().strip()
        try:
            with db_session(self.tracker.session_factory) as db:
                task = catalog.get_task_by_key(db, key)
                if task is None:
                    raise NotFound(f"Unknown task {key}")
                services.create_manual_entry(db, task.id, start, end, self.new_comment_input.text().strip())
        except TaskTrackError as exc:
            QMessageBox.warning(self, "Eintrag nicht angelegt", str(exc))
            return
        self.new_comment_input.clear()
        self.refresh()

    def _handle_delete(self) -> None:
        row = self.table.currentRow()
        if row < 0 or row >= len(self._entry_ids):
            return
        answer = QMessageBox.question(self, "Eintrag löschen", "Den ausgewählten Eintrag wirklich löschen?")
        if answer != QMessageBox.Yes:
            return
        try:
            with db_session(self.tracker.session_factory) as db:
                services.delete_entry(db, self._entry_ids[row])
        except TaskTrackError as exc:
            QMessageBox.warning(self, "Löschen fehlgeschlagen", str(exc))
            return
        self.refresh()


__all__ = ["EntryEditor"]
