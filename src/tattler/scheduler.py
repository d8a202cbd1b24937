"""Named one-shot alarms on the asyncio event loop.

Each client has one alarm, named after the client id. Creating an alarm
replaces any pending alarm with the same name, so a client is never
scheduled twice.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from .log import get_logger

_log = get_logger("scheduler")

class Scheduler:
    def __init__(self) -> None:
        self._alarms: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def create(
        self, name: str, delay: float, callback: Callable[[], Awaitable[Any]]
    ) -> None:
        """Run callback() as a task after delay seconds."""
        self.clear(name)
        loop = asyncio.get_running_loop()
        self._alarms[name] = loop.call_later(max(delay, 0), self._fire, name, callback)
        _log.debug("alarm %s in %.0fs", name, delay)

    def clear(self, name: str) -> bool:
        handle = self._alarms.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def clear_all(self) -> None:
        for name in list(self._alarms):
            self.clear(name)

    def _fire(self, name: str, callback: Callable[[], Awaitable[Any]]) -> None:
        self._alarms.pop(name, None)
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _log.error("alarm callback failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for callbacks that already started."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
