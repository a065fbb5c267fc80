from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set, Union

logger = logging.getLogger(__name__)

Job = Union[Callable[[], Any], Awaitable[Any]]


class TaskSupervisor:
    """Detached background jobs whose failures are logged instead of lost.

    Plain callables run on the loop thread in a later iteration; coroutines
    become tasks. Neither is awaited by the code that spawns it.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: Set[asyncio.Future] = set()
        self._handles: Set[asyncio.Handle] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def pending(self) -> int:
        return len(self._tasks) + len(self._handles)

    def spawn(self, name: str, job: Job) -> None:
        if asyncio.iscoroutine(job) or isinstance(job, asyncio.Future):
            task = asyncio.ensure_future(job, loop=self.loop)
            self._tasks.add(task)
            task.add_done_callback(lambda done: self._on_task_done(name, done))
            return

        handle: Optional[asyncio.Handle] = None

        def runner() -> None:
            self._handles.discard(handle)
            try:
                job()
            except Exception:
                logger.exception("Background job %s failed", name)

        handle = self.loop.call_soon(runner)
        self._handles.add(handle)

    def _on_task_done(self, name: str, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background job %s cancelled", name)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background job %s failed", name, exc_info=(type(exc), exc, exc.__traceback__))

    async def join(self) -> None:
        """Wait until every job spawned so far, and those they spawn, has finished."""
        while self._tasks or self._handles:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(0)

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
        for task in list(self._tasks):
            task.cancel()


class EditGuard:
    """Boolean latch that refuses a second edit while one is being saved."""

    def __init__(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def acquire(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False
