"""
Repeating Tasks
===============

Cancellable fixed-rate callbacks on the running event loop.

Ticks are not re-entrant: the next callback starts only after the previous
one returned, and missed ticks are skipped rather than queued.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTask:
    """Runs ``callback`` every ``interval_ms`` until cancelled.

    Args:
        interval_ms: Target spacing between callback starts.
        callback:    Plain function or coroutine function, no arguments.
        name:        Task name, used in logs.
        immediate:   Run the first callback right away instead of after one
                     interval.
    """

    def __init__(
        self,
        interval_ms: float,
        callback: Callable[[], Any],
        name: str = "repeating-task",
        immediate: bool = True,
    ):
        self.interval_s = max(interval_ms, 0) / 1000
        self._callback = callback
        self.name = name
        self._immediate = immediate
        self._task: Optional[asyncio.Task] = None
        self._cancelled: list[asyncio.Task] = []
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Schedule the loop on the running event loop. Idempotent."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)

    def cancel(self):
        """Stop scheduling further callbacks. Safe to call repeatedly."""
        if self._task is not None:
            self._task.cancel()
            self._cancelled = [t for t in self._cancelled if not t.done()]
            self._cancelled.append(self._task)
            self._task = None

    async def stop(self):
        """Cancel and wait for every loop this task has run to finish."""
        self.cancel()
        cancelled, self._cancelled = self._cancelled, []
        for task in cancelled:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _loop(self):
        next_run = time.monotonic()
        if not self._immediate:
            next_run += self.interval_s
        while True:
            delay = next_run - time.monotonic()
            # Always yield so a zero interval cannot starve the loop
            await asyncio.sleep(max(delay, 0))

            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name} callback error: {e}")
            self.runs += 1

            next_run += self.interval_s
            now = time.monotonic()
            if next_run < now:
                next_run = now
