"""Timers on top of ``loop.call_later``.

Every callback runs on the event loop thread, so timers never race each other.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class _BaseTimer:
    def __init__(self, loop: asyncio.AbstractEventLoop, callback: Callable[[], Any], *, name: str) -> None:
        self._loop = loop
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.name = name

    @property
    def is_active(self) -> bool:
        return self._handle is not None

    def stop(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None

    def _invoke(self) -> None:
        try:
            self._callback()
        except Exception:
            logger.exception("Timer callback %s failed", self.name)


class RepeatingTimer(_BaseTimer):
    """Fires every ``interval`` seconds until stopped."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callable[[], Any],
        *,
        name: str,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval of timer {name} must be positive, got {interval}")
        super().__init__(loop, callback, name=name)
        self.interval = float(interval)

    def start(self) -> "RepeatingTimer":
        if self._handle is None:
            self._arm()
        return self

    def set_interval(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"Interval of timer {self.name} must be positive, got {interval}")
        self.interval = float(interval)
        if self._handle is not None:
            self._handle.cancel()
            self._arm()

    def _arm(self) -> None:
        self._handle = self._loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        self._arm()
        self._invoke()


class OneShotTimer(_BaseTimer):
    """Fires once after ``delay`` seconds; starting it again re-arms it."""

    def start(self, delay: float) -> "OneShotTimer":
        self.stop()
        self._handle = self._loop.call_later(max(float(delay), 0.0), self._fire)
        return self

    def _fire(self) -> None:
        self._handle = None
        self._invoke()
