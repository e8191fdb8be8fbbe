"""Shared test fixtures for ollama-relay."""

from __future__ import annotations

import asyncio
from collections import deque

import pytest
import pytest_asyncio

from relay.backend_client import ProbeResult
from relay.endpoint_monitor import EndpointMonitor


class FakeProbe:
    """Scripted probe transport.

    Each queued outcome is a bool, a ProbeResult or an exception to raise.
    When ``gate`` is set, probes block until it is released.
    """

    def __init__(self, default: bool = True, elapsed_ms: float = 10.0):
        self.calls: list[str] = []
        self.default = default
        self.elapsed_ms = elapsed_ms
        self.gate: asyncio.Event | None = None
        self.failing: set[str] = set()
        self._outcomes: deque = deque()

    def script(self, *outcomes) -> None:
        self._outcomes.extend(outcomes)

    async def __call__(self, endpoint: str, timeout: float) -> ProbeResult:
        self.calls.append(endpoint)
        if self.gate is not None:
            await self.gate.wait()
        if endpoint in self.failing:
            return ProbeResult(ok=False, elapsed_ms=self.elapsed_ms)
        outcome = self._outcomes.popleft() if self._outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ProbeResult):
            return outcome
        return ProbeResult(ok=bool(outcome), elapsed_ms=self.elapsed_ms)


@pytest.fixture
def probe():
    return FakeProbe()


@pytest_asyncio.fixture
async def make_monitor(probe):
    """Build monitors with fast timings; every monitor is cleaned up afterwards."""
    created: list[EndpointMonitor] = []

    def _make(**overrides) -> EndpointMonitor:
        options = {
            "interval": 10.0,
            "timeout": 0.5,
            "failure_threshold": 5,
            "dns_delay": 0.05,
            "grace_period": 60.0,
            "notify_window": 0.02,
        }
        options.update(overrides)
        monitor = EndpointMonitor(probe, **options)
        created.append(monitor)
        return monitor

    yield _make

    for monitor in created:
        monitor.cleanup()
