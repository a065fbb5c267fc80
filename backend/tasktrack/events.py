from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class PromptRequested(Event):
    reason: str = "interval"


@dataclass(frozen=True)
class UpdateDataRequested(Event):
    pass


@dataclass(frozen=True)
class CalendarScanRequested(Event):
    pass


@dataclass(frozen=True)
class LunchBreakStarted(Event):
    duration_minutes: int


@dataclass(frozen=True)
class LunchBreakEnded(Event):
    pass


@dataclass(frozen=True)
class TrackingStarted(Event):
    pass


@dataclass(frozen=True)
class TrackingEnded(Event):
    pass


@dataclass(frozen=True)
class EndOfDayReached(Event):
    pass


@dataclass(frozen=True)
class TaskSelected(Event):
    task_id: int
    task_key: str


@dataclass(frozen=True)
class PromptCancelled(Event):
    pass


@dataclass(frozen=True)
class PromptTimedOut(Event):
    pass


Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Queue of typed events; each event type has exactly one handler."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self._handlers: Dict[Type[Event], Handler] = {}

    def subscribe(self, kind: Type[Event], handler: Handler) -> None:
        if kind in self._handlers:
            raise ValueError(f"{kind.__name__} already has a handler")
        self._handlers[kind] = handler

    def unsubscribe(self, kind: Type[Event]) -> None:
        self._handlers.pop(kind, None)

    def emit(self, event: Event) -> None:
        self._queue.put_nowait(event)

    def take_pending(self) -> List[Event]:
        events: List[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    async def dispatch(self, event: Event) -> None:
        handler: Optional[Handler] = self._handlers.get(type(event))
        if handler is None:
            logger.debug("No handler for %s", type(event).__name__)
            return
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler for %s failed", type(event).__name__)

    async def drain(self) -> int:
        """Dispatch everything queued so far, including events emitted by the handlers."""
        handled = 0
        while True:
            pending = self.take_pending()
            if not pending:
                return handled
            for event in pending:
                await self.dispatch(event)
                handled += 1

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            await self.dispatch(event)
