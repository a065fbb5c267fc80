"""System-Tray-Integration."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from PySide6.QtCore import Qt
from PySide6.QtGui import QAction, QColor, QIcon, QPainter, QPixmap
from PySide6.QtWidgets import QApplication, QMenu, QMessageBox, QSystemTrayIcon

from tasktrack.application import TrackerApplication
from tasktrack.errors import TaskTrackError
from tasktrack.prompt import PromptCycle
from tasktrack.tracking import TrackingStatus

from .entries import EntryEditor
from .logs import LogViewer
from .prompt import PromptDialog
from .settings import SettingsDialog
from .summary import SummaryWindow
from .tasks import TaskManager

logger = logging.getLogger(__name__)

STATUS_COLORS: Dict[TrackingStatus, str] = {
    TrackingStatus.ACTIVE: "#0f9d58",
    TrackingStatus.INACTIVE: "#9e9e9e",
    TrackingStatus.ON_LUNCH: "#f4b400",
}

STATUS_LABELS: Dict[TrackingStatus, str] = {
    TrackingStatus.ACTIVE: "Erfassung aktiv",
    TrackingStatus.INACTIVE: "Außerhalb der Erfassungszeit",
    TrackingStatus.ON_LUNCH: "Mittagspause",
}


def _status_icon(color: str) -> QIcon:
    pixmap = QPixmap(32, 32)
    pixmap.fill(Qt.transparent)
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing)
    painter.setBrush(QColor(color))
    painter.setPen(Qt.NoPen)
    painter.drawEllipse(2, 2, 28, 28)
    painter.end()
    return QIcon(pixmap)


class TrayController:
    """Tray-Icon als Statusanzeige und Oberfläche des Kerns.

    Erfüllt sowohl die Statusanzeige des Schedulers (``update_status``) als
    auch die Shell der Anwendung (``show_prompt`` und ``notify``).
    """

    def __init__(
        self,
        app: QApplication,
        *,
        notification_ms: int = 5000,
        on_quit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.app = app
        self.notification_ms = notification_ms
        self.on_quit = on_quit or app.quit
        self.tracker: Optional[TrackerApplication] = None
        self._icons = {status: _status_icon(color) for status, color in STATUS_COLORS.items()}

        self.prompt_dialog: Optional[PromptDialog] = None
        self.entry_editor: Optional[EntryEditor] = None
        self.summary_window: Optional[SummaryWindow] = None
        self.settings_dialog: Optional[SettingsDialog] = None
        self.log_viewer: Optional[LogViewer] = None
        self.task_manager: Optional[TaskManager] = None

        self.tray_icon = QSystemTrayIcon(self._icons[TrackingStatus.INACTIVE])
        self.tray_icon.setToolTip("TaskTrack")
        self.tray_icon.activated.connect(self._handle_activated)
        self.tray_icon.setContextMenu(self._build_menu())

    def attach(self, tracker: TrackerApplication) -> None:
        self.tracker = tracker
        tracker.shell = self
        tracker.scheduler.set_status_indicator(self)

    def show(self) -> None:
        self.tray_icon.show()

    # ------------------------------------------------------------------
    def _build_menu(self) -> QMenu:
        menu = QMenu()

        self.prompt_action = QAction("Aufgabe wählen…", menu)
        self.lunch_start_action = QAction("Mittagspause starten", menu)
        self.lunch_end_action = QAction("Mittagspause beenden", menu)
        self.stop_action = QAction("Tracking stoppen", menu)
        tasks_action = QAction("Aufgaben…", menu)
        entries_action = QAction("Zeiteinträge…", menu)
        summary_action = QAction("Zusammenfassung…", menu)
        settings_action = QAction("Einstellungen…", menu)
        logs_action = QAction("Protokoll…", menu)
        quit_action = QAction("Beenden", menu)

        self.prompt_action.triggered.connect(self._handle_prompt)
        self.lunch_start_action.triggered.connect(self._handle_lunch_start)
        self.lunch_end_action.triggered.connect(self._handle_lunch_end)
        self.stop_action.triggered.connect(self._handle_stop)
        tasks_action.triggered.connect(self.show_tasks)
        entries_action.triggered.connect(self.show_entries)
        summary_action.triggered.connect(self.show_summary)
        settings_action.triggered.connect(self.show_settings)
        logs_action.triggered.connect(self.show_logs)
        quit_action.triggered.connect(self._handle_quit)

        menu.addAction(self.prompt_action)
        menu.addSeparator()
        menu.addAction(self.lunch_start_action)
        menu.addAction(self.lunch_end_action)
        menu.addAction(self.stop_action)
        menu.addSeparator()
        menu.addAction(tasks_action)
        menu.addAction(entries_action)
        menu.addAction(summary_action)
        menu.addAction(settings_action)
        menu.addAction(logs_action)
        menu.addSeparator()
        menu.addAction(quit_action)

        menu.aboutToShow.connect(self._refresh_menu)
        return menu

    def _refresh_menu(self) -> None:
        on_lunch = self.tracker is not None and self.tracker.scheduler.is_on_lunch_break
        self.lunch_start_action.setEnabled(not on_lunch)
        self.lunch_end_action.setEnabled(on_lunch)

    # ------------------------------------------------------------------
    # Statusanzeige und Shell
    # ------------------------------------------------------------------
    def update_status(self, status: TrackingStatus) -> None:
        self.tray_icon.setIcon(self._icons[status])
        tooltip = f"TaskTrack – {STATUS_LABELS[status]}"
        if status is TrackingStatus.ON_LUNCH and self.tracker is not None:
            minutes = int(self.tracker.scheduler.lunch_break_remaining.total_seconds() // 60)
            tooltip += f" (noch {minutes} Min)"
        self.tray_icon.setToolTip(tooltip)

    def show_prompt(self, cycle: PromptCycle) -> None:
        if self.prompt_dialog is not None:
            self.prompt_dialog.dismiss()
        self.prompt_dialog = PromptDialog(cycle, timeout_seconds=self.tracker.state.tracking.prompt_timeout_seconds)
        self.prompt_dialog.show()
        self.prompt_dialog.raise_()
        self.prompt_dialog.activateWindow()

    def notify(self, title: str, message: str) -> None:
        self.tray_icon.showMessage(title, message, QSystemTrayIcon.Information, self.notification_ms)

    # ------------------------------------------------------------------
    def show_tasks(self) -> None:
        if self.task_manager is None:
            self.task_manager = TaskManager(self.tracker)
        self.task_manager.refresh()
        self._present(self.task_manager)

    def show_entries(self) -> None:
        if self.entry_editor is None:
            self.entry_editor = EntryEditor(self.tracker)
        self.entry_editor.refresh()
        self._present(self.entry_editor)

    def show_summary(self) -> None:
        if self.summary_window is None:
            self.summary_window = SummaryWindow(self.tracker)
        self.summary_window.refresh()
        self._present(self.summary_window)

    def show_settings(self) -> None:
        if self.settings_dialog is None:
            self.settings_dialog = SettingsDialog(self.tracker)
        self.settings_dialog.load()
        self._present(self.settings_dialog)

    def show_logs(self) -> None:
        if self.log_viewer is None:
            self.log_viewer = LogViewer(self.tracker)
        self.log_viewer.refresh()
        self._present(self.log_viewer)

    @staticmethod
    def _present(widget) -> None:
        widget.show()
        widget.raise_()
        widget.activateWindow()

    # ------------------------------------------------------------------
    def _handle_activated(self, reason: QSystemTrayIcon.ActivationReason) -> None:
        if reason == QSystemTrayIcon.DoubleClick:
            self._handle_prompt()

    def _handle_quit(self) -> None:
        self.on_quit()

    def _handle_prompt(self) -> None:
        if self.tracker is not None:
            self.tracker.request_prompt("manual")

    def _handle_lunch_start(self) -> None:
        if self.tracker is None:
            return
        self.tracker.scheduler.start_lunch_break()

    def _handle_lunch_end(self) -> None:
        if self.tracker is None:
            return
        self.tracker.scheduler.end_lunch_break()

    def _handle_stop(self) -> None:
        if self.tracker is None:
            return
        try:
            stopped = self.tracker.stop_tracking()
        except TaskTrackError as exc:
            logger.warning("Stopping from the tray failed: %s", exc)
            QMessageBox.warning(None, "Tracking", str(exc))
            return
        if not stopped:
            self.notify("TaskTrack", "Es läuft keine Zeiterfassung.")
        else:
            self.notify("TaskTrack", "Tracking gestoppt.")


__all__ = ["TrayController", "STATUS_COLORS"]
