"""Background task that periodically drains a DurableQueue."""

import asyncio
import logging
from typing import Optional

from .durable_queue import DrainReport, DurableQueue


logger = logging.getLogger(__name__)


class QueueWorker:
    """Periodic drain loop running as an asyncio task (not a thread).

    Parameters
    ----------
    queue:
        Queue to drain. Its own lock keeps a timer tick and a manual
        flush() from overlapping.
    interval_seconds:
        Pause between drain passes.
    """

    def __init__(self, queue: DurableQueue, interval_seconds: float = 30.0) -> None:
        self._queue = queue
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the drain loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("[QUEUE] Worker started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[QUEUE] Worker stopped")

    async def flush(self) -> DrainReport:
        """Drain right away; a no-op if a pass is already running."""
        return await self._queue.drain()

    async def _run(self) -> None:
        while True:
            try:
                await self._queue.drain()
            except Exception:
                # Keep the loop alive; the next tick retries.
                logger.exception("[QUEUE] Drain pass failed unexpectedly")
            await asyncio.sleep(self._interval)
