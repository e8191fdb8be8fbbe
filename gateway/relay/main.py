"""Ollama Relay: chat proxy with live endpoint health monitoring."""

import logging
import time as _time
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .backend_client import client
from .config import get_watchlist_entries, load_watchlist_config, settings
from .endpoint_monitor import EndpointMonitor
from .status_reporter import StatusReporter

logger = logging.getLogger(__name__)

# Shared state populated at startup
_monitor: EndpointMonitor | None = None
_reporter: StatusReporter | None = None
_watchlist: list[dict] = []
_start_time: float = 0.0


def get_monitor() -> EndpointMonitor:
    if _monitor is None:
        raise RuntimeError("Endpoint monitor is not initialized")
    return _monitor


def _load_watchlist() -> list[dict]:
    try:
        return get_watchlist_entries(load_watchlist_config())
    except FileNotFoundError as e:
        logger.warning("%s; starting with an empty watchlist", e)
        return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: init httpx pool, status reporter, monitor and watchlist."""
    global _monitor, _reporter, _watchlist, _start_time

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    await client.start()

    webhook_url = settings.status_webhook_url.strip()
    if webhook_url:
        _reporter = StatusReporter(
            partial(client.report_status, webhook_url),
            queue_size=settings.status_report_queue_size,
        )
        await _reporter.start()
        logger.info("Status reports enabled: %s", webhook_url)

    _monitor = EndpointMonitor(
        client.probe,
        reporter=_reporter,
        interval=settings.health_check_interval_seconds,
        timeout=settings.health_check_timeout_seconds,
        failure_threshold=settings.max_consecutive_failures,
        dns_delay=settings.dns_resolution_delay_seconds,
        grace_period=settings.new_endpoint_grace_period_seconds,
        notify_window=settings.notify_window_seconds,
    )

    _watchlist = _load_watchlist()
    for entry in _watchlist:
        _monitor.start_monitoring(entry["url"], is_new=entry["new"], deferred=entry["deferred"])
    logger.info("Loaded %d watchlist endpoints from %s", len(_watchlist), settings.watchlist_path)

    _start_time = _time.time()
    logger.info("Ollama Relay started")

    yield

    _monitor.cleanup()
    _monitor = None
    if _reporter is not None:
        await _reporter.stop()
        _reporter = None
    await client.stop()
    logger.info("Ollama Relay stopped")


app = FastAPI(title="Ollama Relay", version="1.0.0", lifespan=lifespan)


# --- Error handling ---


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    import httpx as _httpx

    if isinstance(exc, _httpx.ConnectError):
        return JSONResponse(status_code=503, content={"error": "Endpoint unavailable", "detail": str(exc)})
    if isinstance(exc, (_httpx.ReadTimeout, _httpx.WriteTimeout)):
        return JSONResponse(status_code=504, content={"error": "Endpoint timeout", "detail": str(exc)})
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Health endpoint ---


@app.get("/health")
async def health():
    """Relay status with the monitor's per-endpoint registry."""
    monitor = get_monitor()
    endpoints = monitor.status()
    if monitor.is_paused():
        status = "paused"
    elif any(e["tripped"] for e in endpoints.values()):
        status = "degraded"
    else:
        status = "healthy"
    return {
        "status": status,
        "instance": settings.instance_id,
        "uptime_seconds": round(_time.time() - _start_time, 1),
        "endpoints": endpoints,
        "status_reports": _reporter.stats() if _reporter is not None else None,
    }


# --- Mount routers ---

from .router_monitor import router as monitor_router  # noqa: E402
from .router_proxy import router as proxy_router  # noqa: E402

app.include_router(proxy_router)
app.include_router(monitor_router)
