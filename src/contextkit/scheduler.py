"""Periodic ticker for background refresh loops.

A tick starts the callback only if the previous tick's callback has finished.
Busy ticks are dropped, not queued, so at most one callback is ever in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run an async *callback* every *interval* seconds on the running event loop."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "periodic",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._loop_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self.ticks = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start ticking. Calling start() on a running task is a no-op."""
        if self.running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        """Cancel the ticker and any in-flight callback, then wait for both."""
        tasks = [t for t in (self._loop_task, self._inflight) if t is not None]
        self._loop_task = None
        self._inflight = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.ticks += 1
            if self._inflight is not None and not self._inflight.done():
                self.dropped += 1
                logger.debug("%s: previous tick still running, skipping", self.name)
                continue
            self._inflight = asyncio.get_running_loop().create_task(self._invoke())

    async def _invoke(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s: background callback failed", self.name)
