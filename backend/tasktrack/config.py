from __future__ import annotations

import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Process-level configuration; user preferences live in the settings file."""

    app_name: str = "TaskTrack"
    environment: str = "development"

    sqlite_path: Path = Path(os.getenv("TT_SQLITE_PATH", "./data/tasktrack.db"))
    settings_file: Path = Path(os.getenv("TT_SETTINGS_FILE", "./data/appsettings.json"))
    export_dir: Path = Path(os.getenv("TT_EXPORT_DIR", "./data/exports"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")

    log_level: str = os.getenv("TT_LOG_LEVEL", "INFO")
    log_to_db: bool = os.getenv("TT_LOG_TO_DB", "true").lower() == "true"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return str(value or "INFO").strip().upper()


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.settings_file.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
