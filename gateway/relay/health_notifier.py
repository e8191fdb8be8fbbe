"""Coalesced change notifications for health snapshot listeners."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)

NOTIFY_WINDOW_SECONDS = 0.1

Listener = Callable[[], None]


class HealthNotifier:
    """Delivers one no-payload callback per burst of snapshot writes.

    Each ``schedule()`` call pushes the pending flush back to ``window``
    seconds from now, so listeners run once after the last write of a burst.
    Listeners re-query the monitor for current state.
    """

    def __init__(self, window: float = NOTIFY_WINDOW_SECONDS):
        self._window = max(0.0, window)
        self._listeners: set[Listener] = set()
        self._flush_handle: asyncio.TimerHandle | None = None
        self._listener_failures = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    def schedule(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(self._window, self._flush)

    @property
    def pending(self) -> bool:
        return self._flush_handle is not None

    def close(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._listeners.clear()

    def stats(self) -> dict:
        return {
            "listener_count": len(self._listeners),
            "listener_failures": self._listener_failures,
            "flush_pending": self.pending,
        }

    def _flush(self) -> None:
        self._flush_handle = None
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                self._listener_failures += 1
                logger.exception("Error in health listener")
