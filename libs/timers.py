"""
One-shot timers for deferred coroutines.

A timer factory is any callable ``(delay_seconds, coroutine_fn) -> handle``
where the handle exposes ``cancel()``. The default arms ``loop.call_later``
on the running event loop; tests swap in a fake clock-driven factory.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class AsyncioTimerFactory:
    """Arms timers on the running asyncio loop and keeps fired tasks referenced."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def __call__(self, delay: float, callback: TimerCallback) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0.0), self._spawn, callback)

    def _spawn(self, callback: TimerCallback) -> None:
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Timer callback failed: {exc!r}")

    @property
    def running(self) -> int:
        return len(self._tasks)
