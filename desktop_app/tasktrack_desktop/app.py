"""Einstiegspunkt für die Desktop-Anwendung."""

from __future__ import annotations

import asyncio
import logging
import sys

import PySide6.QtAsyncio as QtAsyncio
from PySide6.QtWidgets import QApplication, QMessageBox, QSystemTrayIcon

from .config import DesktopConfig, load_config

logger = logging.getLogger(__name__)


async def _run(app: QApplication, config: DesktopConfig) -> None:
    # Der Kern liest seine Einstellungen beim Import, daher erst nach load_config().
    from tasktrack.application import TrackerApplication
    from tasktrack.config import settings
    from tasktrack.database import init_db
    from tasktrack.logs import configure_logging
    from tasktrack.state import RuntimeState

    from .widgets.tray import TrayController

    configure_logging(settings.log_level, persist=settings.log_to_db)
    init_db()

    state = RuntimeState(settings)
    state.load()

    tray = TrayController(app, notification_ms=config.notification_ms)
    tracker = TrackerApplication(state)
    tray.attach(tracker)

    async def quit_app() -> None:
        await tracker.shutdown()
        tray.tray_icon.hide()
        app.quit()

    tray.on_quit = lambda: asyncio.ensure_future(quit_app())
    tray.show()

    try:
        await tracker.initialize()
    except Exception:
        logger.exception("Initialisation failed")
        QMessageBox.warning(None, "TaskTrack", "Die Initialisierung ist fehlgeschlagen, Details im Protokoll.")

    if not state.jira.is_configured:
        tray.notify("TaskTrack", "JIRA ist noch nicht eingerichtet. Bitte die Einstellungen öffnen.")
        tray.show_settings()
    if config.show_summary_on_start:
        tray.show_summary()


def main() -> None:
    """Startet die Qt-Anwendung."""

    config = load_config()

    app = QApplication(sys.argv)
    app.setApplicationName("TaskTrack")
    app.setOrganizationName("TaskTrack")
    app.setQuitOnLastWindowClosed(False)

    if not QSystemTrayIcon.isSystemTrayAvailable():
        QMessageBox.critical(None, "TaskTrack", "Kein System-Tray verfügbar.")
        sys.exit(1)

    QtAsyncio.run(_run(app, config), keep_running=True, quit_qapp=True)


__all__ = ["main"]
