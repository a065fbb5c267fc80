"""Abfragedialog „Woran arbeitest du gerade?“."""

from __future__ import annotations

from typing import Optional

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QCloseEvent
from PySide6.QtWidgets import (QCheckBox, QComboBox, QDialog, QFormLayout,
                               QGroupBox, QHBoxLayout, QLabel, QLineEdit,
                               QMessageBox, QPushButton, QSpinBox, QVBoxLayout,
                               QWidget)

from tasktrack.errors import TaskTrackError
from tasktrack.prompt import PromptCycle

REASON_TEXT = {
    "interval": "Regelmäßige Abfrage",
    "manual": "Manuell geöffnet",
    "tracking_started": "Die Erfassungszeit hat begonnen",
    "lunch_ended": "Die Mittagspause ist vorbei",
}


class PromptDialog(QDialog):
    """Dialog zur Auswahl der aktuellen Aufgabe, gebunden an einen :class:`PromptCycle`.

    Der Dialog hält keinen eigenen Zustand; jede Eingabe wird sofort an den
    Zyklus weitergegeben. Läuft die Zeit ab, entscheidet der Zyklus selbst und
    der Dialog schließt sich beim nächsten Countdown-Schritt.
    """

    def __init__(self, cycle: PromptCycle, *, timeout_seconds: int, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.cycle = cycle
        self.remaining = timeout_seconds
        self._dismissed = False
        self._populating = False

        self.setWindowTitle("TaskTrack – Woran arbeitest du gerade?")
        self.setWindowFlag(Qt.WindowStaysOnTopHint, True)
        self.setMinimumWidth(480)

        self.reason_label = QLabel(REASON_TEXT.get(cycle.selection.reason, cycle.selection.reason))
        self.countdown_label = QLabel()

        self.project_combo = QComboBox()
        self.task_combo = QComboBox()
        self.project_combo.currentIndexChanged.connect(self._handle_project_changed)
        self.task_combo.currentIndexChanged.connect(self._handle_task_changed)

        self.lunch_checkbox = QCheckBox("Mittagspause")
        self.lunch_spin = QSpinBox()
        self.lunch_spin.setRange(1, 240)
        self.lunch_spin.setSuffix(" Min")
        self.lunch_spin.setValue(cycle.selection.lunch_duration_minutes)
        self.lunch_checkbox.toggled.connect(self._handle_lunch_toggled)
        self.lunch_spin.valueChanged.connect(self._handle_lunch_duration)

        self.manual_input = QLineEdit()
        self.manual_input.setPlaceholderText("Kurzbeschreibung der neuen Aufgabe")
        self.manual_button = QPushButton("Neue Aufgabe erfassen")
        self.manual_button.clicked.connect(self._handle_manual)

        self.confirm_button = QPushButton("Übernehmen")
        self.confirm_button.setDefault(True)
        self.cancel_button = QPushButton("Abbrechen")
        self.confirm_button.clicked.connect(self._handle_confirm)
        self.cancel_button.clicked.connect(self.close)

        self._build_ui()
        self._populate()

        self.timer = QTimer(self)
        self.timer.timeout.connect(self._tick)
        self.timer.start(1000)
        self._update_countdown()

    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        form = QFormLayout()
        form.addRow("Projekt", self.project_combo)
        form.addRow("Aufgabe", self.task_combo)

        lunch_row = QHBoxLayout()
        lunch_row.addWidget(self.lunch_checkbox)
        lunch_row.addWidget(self.lunch_spin)
        lunch_row.addStretch(1)
        form.addRow(lunch_row)

        manual_group = QGroupBox("Aufgabe ohne JIRA-Vorgang")
        manual_layout = QHBoxLayout(manual_group)
        manual_layout.addWidget(self.manual_input, stretch=1)
        manual_layout.addWidget(self.manual_button)

        button_row = QHBoxLayout()
        button_row.addWidget(self.countdown_label)
        button_row.addStretch(1)
        button_row.addWidget(self.cancel_button)
        button_row.addWidget(self.confirm_button)

        layout = QVBoxLayout(self)
        layout.addWidget(self.reason_label)
        layout.addLayout(form)
        layout.addWidget(manual_group)
        layout.addLayout(button_row)

    def _populate(self) -> None:
        selection = self.cycle.selection
        self._populating = True
        try:
            self.project_combo.clear()
            self.project_combo.addItem("– Projekt wählen –", None)
            for project in selection.projects:
                self.project_combo.addItem(f"{project.name} ({project.code})", project.id)
            index = self.project_combo.findData(selection.project_id) if selection.project_id is not None else 0
            self.project_combo.setCurrentIndex(max(index, 0))
            self._fill_tasks()
            self.lunch_checkbox.setChecked(selection.lunch_mode)
        finally:
            self._populating = False
        self._update_controls()

    def _fill_tasks(self) -> None:
        selection = self.cycle.selection
        self.task_combo.clear()
        self.task_combo.addItem("– Aufgabe wählen –", None)
        for task in selection.tasks:
            self.task_combo.addItem(task.label, task.id)
        index = self.task_combo.findData(selection.task_id) if selection.task_id is not None else 0
        self.task_combo.setCurrentIndex(max(index, 0))

    def _update_controls(self) -> None:
        lunch = self.cycle.selection.lunch_mode
        self.project_combo.setEnabled(not lunch)
        self.task_combo.setEnabled(not lunch)
        self.lunch_spin.setEnabled(lunch)
        self.manual_button.setEnabled(not lunch and self.cycle.selection.project_id is not None)
        self.confirm_button.setEnabled(self.cycle.can_confirm())

    def _update_countdown(self) -> None:
        self.countdown_label.setText(f"Automatische Übernahme in {max(self.remaining, 0)} s")

    # ------------------------------------------------------------------
    def _tick(self) -> None:
        if not self.cycle.is_awaiting:
            self.dismiss()
            return
        self.remaining -= 1
        self._update_countdown()

    def _handle_project_changed(self, _index: int) -> None:
        if self._populating:
            return
        self.cycle.choose_project(self.project_combo.currentData())
        self._populating = True
        try:
            self._fill_tasks()
        finally:
            self._populating = False
        self._update_controls()

    def _handle_task_changed(self, _index: int) -> None:
        if self._populating:
            return
        self.cycle.choose_task(self.task_combo.currentData())
        self._update_controls()

    def _handle_lunch_toggled(self, checked: bool) -> None:
        if self._populating:
            return
        if checked != self.cycle.selection.lunch_mode:
            self.cycle.toggle_lunch_mode()
        self._update_controls()

    def _handle_lunch_duration(self, value: int) -> None:
        self.cycle.selection.lunch_duration_minutes = value
        self._update_controls()

    def _handle_confirm(self) -> None:
        try:
            resolution = self.cycle.confirm()
        except (TaskTrackError, ValueError) as exc:
            QMessageBox.warning(self, "Auswahl fehlgeschlagen", str(exc))
            return
        if resolution is not None:
            self.dismiss()

    def _handle_manual(self) -> None:
        try:
            resolution = self.cycle.submit_manual_task(self.cycle.selection.project_id, self.manual_input.text())
        except (TaskTrackError, ValueError) as exc:
            QMessageBox.warning(self, "Aufgabe nicht angelegt", str(exc))
            return
        if resolution is not None:
            self.dismiss()

    # ------------------------------------------------------------------
    def dismiss(self) -> None:
        """Schließt den Dialog, ohne den Zyklus abzubrechen."""

        self._dismissed = True
        self.timer.stop()
        self.close()

    def closeEvent(self, event: QCloseEvent) -> None:
        self.timer.stop()
        if not self._dismissed:
            self.cycle.cancel()
        super().closeEvent(event)


__all__ = ["PromptDialog"]
