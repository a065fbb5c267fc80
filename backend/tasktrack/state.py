from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional, Set, Tuple

from pydantic import ValidationError

from .config import Settings
from .schemas import SECRET_UNCHANGED, AppSettings, CalendarSettings, JiraSettings, TrackingSettings

logger = logging.getLogger(__name__)

SECRET_FIELDS: Set[Tuple[str, str]] = {("jira", "api_token"), ("calendar", "password")}


class RuntimeState:
    """User settings that can be adjusted while the tracker is running."""

    def __init__(self, base_settings: Settings, path: Optional[Path] = None):
        self._lock = RLock()
        self._path = Path(path) if path is not None else base_settings.settings_file
        self._settings = AppSettings()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def tracking(self) -> TrackingSettings:
        with self._lock:
            return self._settings.tracking.model_copy()

    @property
    def jira(self) -> JiraSettings:
        with self._lock:
            return self._settings.jira.model_copy()

    @property
    def calendar(self) -> CalendarSettings:
        with self._lock:
            return self._settings.calendar.model_copy()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            data = self._settings.model_dump()
        for section, key in SECRET_FIELDS:
            value = data[section].pop(key)
            data[section][f"{key}_set"] = bool(value)
        data["jira"]["is_configured"] = self.jira.is_configured
        return data

    def apply(self, updates: Dict[str, Any]) -> Set[Tuple[str, str]]:
        """Merge partial section updates; returns the (section, field) pairs that changed."""
        with self._lock:
            current = self._settings.model_dump()
            merged = json.loads(json.dumps(current))
            for section, values in updates.items():
                if section not in merged:
                    raise KeyError(f"Unknown settings section: {section}")
                if values is None:
                    continue
                for key, value in values.items():
                    if (section, key) in SECRET_FIELDS and value == SECRET_UNCHANGED:
                        continue
                    merged[section][key] = value
            validated = AppSettings.model_validate(merged)
            new_values = validated.model_dump()
            changed = {
                (section, key)
                for section, fields in new_values.items()
                for key, value in fields.items()
                if current[section].get(key) != value
            }
            self._settings = validated
        if changed:
            logger.info("Settings changed: %s", ", ".join(sorted(f"{s}.{k}" for s, k in changed)))
        return changed

    def load(self) -> None:
        if not self._path.exists():
            logger.info("Settings file %s does not exist, using defaults", self._path)
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            loaded = AppSettings.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Could not load settings from %s, using defaults: %s", self._path, exc)
            return
        with self._lock:
            self._settings = loaded
        logger.info(
            "Settings loaded (tracking %s-%s, JIRA configured: %s)",
            loaded.tracking.tracking_start_time,
            loaded.tracking.tracking_end_time,
            loaded.jira.is_configured,
        )

    def persist(self) -> None:
        with self._lock:
            payload = self._settings.model_dump_json(indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".appsettings-", suffix=".json", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
