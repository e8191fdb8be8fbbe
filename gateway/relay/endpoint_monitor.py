"""Process-wide health monitor for user-supplied Ollama endpoints.

One ``EndpointMonitor`` owns a registry keyed by the exact endpoint string.
Each registration is reference counted; the last ``stop_monitoring`` call
discards its snapshot, metrics, failure streak and timers together.

All methods run on the event loop thread, so registry updates never
interleave. Probes are the only suspension point and at most one is in
flight per endpoint.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from .backend_client import ProbeResult
from .failure_tracker import FailureTracker
from .health_notifier import NOTIFY_WINDOW_SECONDS, HealthNotifier
from .models import HealthMetrics, HealthSnapshot
from .status_reporter import StatusReporter

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = 3.0
HEALTH_CHECK_TIMEOUT = 1.0
MAX_CONSECUTIVE_FAILURES = 5
DNS_RESOLUTION_DELAY = 5.0
NEW_ENDPOINT_GRACE_PERIOD = 120.0
INACTIVITY_THRESHOLD = 300.0

TRIPPED_MESSAGE = "Endpoint unreachable after {failures} consecutive health checks"

ProbeFn = Callable[[str, float], Awaitable[ProbeResult]]


class MonitorState(str, enum.Enum):
    DEFERRED = "deferred"  # waiting for the DNS delay or for resume()
    ACTIVE = "active"
    TRIPPED = "tripped"


@dataclass
class EndpointMetrics:
    total_requests: int = 0
    failed_requests: int = 0
    total_time_ms: float = 0.0

    def record(self, success: bool, elapsed_ms: float) -> None:
        self.total_requests += 1
        if success:
            self.total_time_ms += elapsed_ms
        else:
            self.failed_requests += 1

    def snapshot(self) -> HealthMetrics | None:
        if self.total_requests == 0:
            return None
        # Successful latency only, averaged over every probe including failures.
        return HealthMetrics(
            total_requests=self.total_requests,
            failed_requests=self.failed_requests,
            average_response_time_ms=self.total_time_ms / self.total_requests,
        )


@dataclass(eq=False)
class _Registration:
    tracker: FailureTracker
    state: MonitorState
    refs: int = 1
    metrics: EndpointMetrics = field(default_factory=EndpointMetrics)
    snapshot: HealthSnapshot | None = None
    started_at: float | None = None
    ticker: asyncio.Task | None = None
    deferred_handle: asyncio.TimerHandle | None = None
    deferred_due: bool = False
    restart_requested: bool = False


class EndpointMonitor:
    """Ref-counted, rate-limited health monitoring with a tripping circuit."""

    def __init__(
        self,
        probe: ProbeFn,
        *,
        reporter: StatusReporter | None = None,
        interval: float = HEALTH_CHECK_INTERVAL,
        timeout: float = HEALTH_CHECK_TIMEOUT,
        failure_threshold: int = MAX_CONSECUTIVE_FAILURES,
        dns_delay: float = DNS_RESOLUTION_DELAY,
        grace_period: float = NEW_ENDPOINT_GRACE_PERIOD,
        notify_window: float = NOTIFY_WINDOW_SECONDS,
    ):
        self._probe = probe
        self._reporter = reporter
        self._interval = interval
        self._timeout = timeout
        self._failure_threshold = failure_threshold
        self._dns_delay = dns_delay
        self._grace_period = grace_period
        self._notifier = HealthNotifier(window=notify_window)
        self._registrations: dict[str, _Registration] = {}
        self._in_flight: dict[str, asyncio.Task[ProbeResult]] = {}
        self._paused = False

    # --- Public API ---

    def start_monitoring(self, endpoint: str, is_new: bool = False, deferred: bool = False) -> None:
        if not endpoint:
            return

        registration = self._registrations.get(endpoint)
        if registration is not None:
            registration.refs += 1
            if self._paused:
                registration.restart_requested = True
            return

        registration = _Registration(
            tracker=FailureTracker(threshold=self._failure_threshold),
            state=MonitorState.DEFERRED,
        )
        self._registrations[endpoint] = registration

        if is_new:
            registration.started_at = time.monotonic()
        if is_new or deferred:
            self._write_snapshot(endpoint, registration, connected=False)

        if deferred:
            loop = asyncio.get_running_loop()
            registration.deferred_handle = loop.call_later(
                self._dns_delay, self._on_deferred_elapsed, endpoint, registration
            )
            logger.info("Monitoring %s after %.1fs DNS resolution delay", endpoint, self._dns_delay)
            return

        if self._paused:
            registration.deferred_due = True
            logger.info("Monitoring %s once health checks resume", endpoint)
            return

        logger.info("Monitoring %s", endpoint)
        self._activate(endpoint, registration)

    def stop_monitoring(self, endpoint: str) -> None:
        if not endpoint:
            return
        registration = self._registrations.get(endpoint)
        if registration is None:
            return

        registration.refs -= 1
        if registration.refs > 0:
            return

        del self._registrations[endpoint]
        self._cancel_timers(registration)
        # A probe already on the wire finishes on its own and is discarded.
        self._in_flight.pop(endpoint, None)
        logger.info("Stopped monitoring %s", endpoint)
        self._notifier.schedule()

    def get_health(self, endpoint: str) -> HealthSnapshot | None:
        registration = self._registrations.get(endpoint) if endpoint else None
        return registration.snapshot if registration is not None else None

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._notifier.subscribe(listener)

    def pause(self) -> None:
        """Stop recurring health checks everywhere. In-flight probes still complete."""
        was_paused = self._paused
        self._paused = True
        for registration in self._registrations.values():
            self._cancel_ticker(registration)
        if was_paused:
            return
        logger.info("Health monitoring paused for %d endpoints", len(self._registrations))
        self._notifier.schedule()

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False

        for endpoint, registration in list(self._registrations.items()):
            restart = registration.restart_requested
            registration.restart_requested = False
            if registration.state is MonitorState.TRIPPED:
                if restart:
                    logger.info("Restarting monitoring of tripped endpoint %s", endpoint)
                    registration.tracker.reset()
                    self._activate(endpoint, registration)
            elif registration.state is MonitorState.DEFERRED:
                if registration.deferred_due:
                    self._activate(endpoint, registration)
            else:
                self._start_ticker(endpoint, registration)

        logger.info("Health monitoring resumed for %d endpoints", len(self._registrations))
        self._notifier.schedule()

    def is_paused(self) -> bool:
        return self._paused

    def cleanup(self) -> None:
        """Drop every registration, timer and listener."""
        for registration in self._registrations.values():
            self._cancel_timers(registration)
        self._registrations.clear()
        self._in_flight.clear()
        self._notifier.close()
        self._paused = False

    def endpoint_state(self, endpoint: str) -> MonitorState | None:
        registration = self._registrations.get(endpoint)
        return registration.state if registration is not None else None

    def status(self) -> dict[str, dict]:
        return {
            endpoint: {
                "state": registration.state.value,
                "refs": registration.refs,
                "scheduled": registration.ticker is not None,
                "probe_in_flight": endpoint in self._in_flight,
                "consecutive_failures": registration.tracker.consecutive_failures,
                "tripped": registration.tracker.tripped,
            }
            for endpoint, registration in self._registrations.items()
        }

    # --- Probe executor ---

    async def check_endpoint_health(self, endpoint: str) -> ProbeResult:
        """Probe ``endpoint`` once, joining the probe already in flight if any."""
        if not endpoint:
            return ProbeResult(ok=False, elapsed_ms=0.0)
        task = self._launch_probe(endpoint)
        return await asyncio.shield(task)

    def _launch_probe(self, endpoint: str) -> asyncio.Task[ProbeResult]:
        task = self._in_flight.get(endpoint)
        if task is None:
            task = asyncio.create_task(
                self._run_probe(endpoint, self._registrations.get(endpoint)),
                name=f"health-probe:{endpoint}",
            )
            self._in_flight[endpoint] = task
        return task

    async def _run_probe(self, endpoint: str, registration: _Registration | None) -> ProbeResult:
        try:
            try:
                result = await asyncio.wait_for(
                    self._probe(endpoint, self._timeout), timeout=self._timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Health check for %s timed out after %.0fms", endpoint, self._timeout * 1000)
                result = ProbeResult(ok=False, elapsed_ms=self._timeout * 1000)
            except Exception as e:
                logger.warning("Health check for %s failed: %s", endpoint, e)
                result = ProbeResult(ok=False, elapsed_ms=0.0)

            if registration is not None and self._registrations.get(endpoint) is registration:
                self._record_result(endpoint, registration, result)
            return result
        finally:
            if self._in_flight.get(endpoint) is asyncio.current_task():
                del self._in_flight[endpoint]

    # --- Failure classifier and state store ---

    def _record_result(self, endpoint: str, registration: _Registration, result: ProbeResult) -> None:
        registration.metrics.record(result.ok, result.elapsed_ms)
        tripped = False
        if result.ok:
            registration.tracker.record_success()
        else:
            tripped = registration.tracker.record_failure()

        self._write_snapshot(
            endpoint,
            registration,
            connected=result.ok,
            response_time_ms=result.elapsed_ms if result.ok else None,
        )
        if tripped:
            self._trip(endpoint, registration)

    def _trip(self, endpoint: str, registration: _Registration) -> None:
        failures = registration.tracker.consecutive_failures
        logger.error(
            "Endpoint %s failed %d consecutive health checks; pausing all monitoring",
            endpoint,
            failures,
        )
        registration.state = MonitorState.TRIPPED
        self._cancel_timers(registration)
        registration.deferred_due = False
        self.pause()
        if self._reporter is not None:
            self._reporter.submit(endpoint, TRIPPED_MESSAGE.format(failures=failures))

    def _write_snapshot(
        self,
        endpoint: str,
        registration: _Registration,
        *,
        connected: bool,
        response_time_ms: float | None = None,
    ) -> None:
        in_grace_period, remaining_ms = self._grace_window(registration)
        registration.snapshot = HealthSnapshot(
            connected=connected,
            last_checked_at=datetime.now(timezone.utc),
            response_time_ms=response_time_ms,
            consecutive_failures=registration.tracker.consecutive_failures,
            in_grace_period=in_grace_period,
            grace_period_remaining_ms=remaining_ms,
            metrics=registration.metrics.snapshot(),
        )
        self._notifier.schedule()

    def _grace_window(self, registration: _Registration) -> tuple[bool, float]:
        if registration.started_at is None:
            return False, 0.0
        elapsed = time.monotonic() - registration.started_at
        if elapsed >= self._grace_period:
            return False, 0.0
        return True, (self._grace_period - elapsed) * 1000.0

    # --- Scheduler ---

    def _activate(self, endpoint: str, registration: _Registration) -> None:
        registration.state = MonitorState.ACTIVE
        registration.deferred_due = False
        self._launch_probe(endpoint)
        self._start_ticker(endpoint, registration)

    def _on_deferred_elapsed(self, endpoint: str, registration: _Registration) -> None:
        registration.deferred_handle = None
        if self._registrations.get(endpoint) is not registration:
            return
        if registration.state is not MonitorState.DEFERRED:
            return
        try:
            if self._paused:
                registration.deferred_due = True
                logger.info("DNS delay for %s elapsed while paused; waiting for resume", endpoint)
                return
            self._activate(endpoint, registration)
        except Exception:
            logger.exception("Failed to activate monitoring for %s", endpoint)

    def _start_ticker(self, endpoint: str, registration: _Registration) -> None:
        if registration.ticker is None:
            registration.ticker = asyncio.create_task(
                self._tick(endpoint, registration), name=f"health-tick:{endpoint}"
            )

    async def _tick(self, endpoint: str, registration: _Registration) -> None:
        while self._registrations.get(endpoint) is registration:
            await asyncio.sleep(self._interval)
            try:
                if endpoint not in self._in_flight:
                    self._launch_probe(endpoint)
            except Exception:
                logger.exception("Failed to perform periodic health check for %s", endpoint)

    @staticmethod
    def _cancel_ticker(registration: _Registration) -> None:
        if registration.ticker is not None:
            registration.ticker.cancel()
            registration.ticker = None

    def _cancel_timers(self, registration: _Registration) -> None:
        self._cancel_ticker(registration)
        if registration.deferred_handle is not None:
            registration.deferred_handle.cancel()
            registration.deferred_handle = None


def is_endpoint_retired(
    last_active: str | datetime,
    now: datetime | None = None,
    threshold: float = INACTIVITY_THRESHOLD,
) -> bool:
    """True when ``last_active`` is older than the inactivity threshold."""
    try:
        if isinstance(last_active, str):
            last_active = datetime.fromisoformat(last_active)
        if last_active.tzinfo is None:
            last_active = last_active.replace(tzinfo=timezone.utc)
        current = now or datetime.now(timezone.utc)
        return (current - last_active).total_seconds() > threshold
    except (TypeError, ValueError) as e:
        logger.error("Failed to check endpoint retirement for %r: %s", last_active, e)
        return False
