"""Background delivery of circuit-trip reports to an external status service."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

ReportFn = Callable[[str, str], Awaitable[None]]


class StatusReporter:
    """Queue trip reports and hand them to ``report`` on a worker task.

    Delivery is best effort: failures are counted and logged, never retried,
    and a full queue drops the newest report.
    """

    def __init__(self, report: ReportFn, *, queue_size: int = 100):
        self._report = report
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue(maxsize=max(1, queue_size))
        self._task: asyncio.Task | None = None
        self._delivered = 0
        self._failures = 0
        self._dropped = 0

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def submit(self, endpoint: str, message: str) -> None:
        try:
            self._queue.put_nowait((endpoint, message))
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning("Status report queue full; dropping report for %s", endpoint)

    async def drain(self) -> None:
        """Wait until every queued report has been attempted."""
        await self._queue.join()

    def stats(self) -> dict:
        return {
            "queued": self._queue.qsize(),
            "delivered": self._delivered,
            "failures": self._failures,
            "dropped": self._dropped,
        }

    async def _run_loop(self) -> None:
        while True:
            endpoint, message = await self._queue.get()
            try:
                await self._report(endpoint, message)
                self._delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._failures += 1
                logger.warning("Failed to report status for %s: %s", endpoint, e)
            finally:
                self._queue.task_done()
