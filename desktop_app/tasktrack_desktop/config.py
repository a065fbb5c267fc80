"""Konfigurations-Utilities für die Desktop-Anwendung."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_NOTIFICATION_MS = 5000


@dataclass(slots=True)
class DesktopConfig:
    """Konfigurationswerte der Oberfläche (der Kern liest seine eigenen ``TT_*`` Werte)."""

    notification_ms: int = DEFAULT_NOTIFICATION_MS
    show_summary_on_start: bool = False


def load_config() -> DesktopConfig:
    """Lädt die Konfiguration aus einer optionalen `.env` Datei.

    Muss vor dem ersten Import von ``tasktrack`` laufen, weil dessen
    Einstellungen die Umgebung beim Import lesen.
    """

    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    load_dotenv(Path.cwd() / ".env")

    return DesktopConfig(
        notification_ms=int(os.getenv("TT_NOTIFICATION_MS", DEFAULT_NOTIFICATION_MS)),
        show_summary_on_start=os.getenv("TT_SHOW_SUMMARY_ON_START", "false").lower() == "true",
    )


__all__ = ["DesktopConfig", "load_config"]
