"""Background write queue for best-effort persistence calls.

Callers submit ``(method, args)`` and continue immediately. A single worker task
drains the queue in FIFO order; a failed write is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from contextkit.bridge.client import BridgeClient, RpcError

logger = logging.getLogger(__name__)


class WriteQueue:
    """Fire-and-forget persistence with ordered delivery."""

    def __init__(self, client: BridgeClient) -> None:
        self._client = client
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]]] | None = None
        self._worker: asyncio.Task[None] | None = None
        self.failed = 0

    def submit(self, method: str, **args: Any) -> None:
        """Queue a write. Must be called from within a running event loop."""
        self._ensure_worker().put_nowait((method, args))

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def flush(self) -> None:
        """Wait until every submitted write has been attempted."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Flush outstanding writes and stop the worker."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    def _ensure_worker(self) -> asyncio.Queue[tuple[str, dict[str, Any]]]:
        """Return the queue, starting a drain task for it if none is running."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._drain(self._queue), name="contextkit-write-queue"
            )
        return self._queue

    async def _drain(self, queue: asyncio.Queue[tuple[str, dict[str, Any]]]) -> None:
        while True:
            method, args = await queue.get()
            try:
                await self._client.call(method, **args)
            except RpcError as exc:
                self.failed += 1
                logger.warning("Persistence call %s failed: %s", method, exc.cause)
            finally:
                queue.task_done()
