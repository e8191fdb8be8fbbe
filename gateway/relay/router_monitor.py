"""Endpoint monitor routes: registration, snapshots, pause control and live events."""

import asyncio
import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from .config import settings
from .endpoint_monitor import EndpointMonitor
from .http_utils import as_sse
from .models import EndpointHealthResponse, MonitorRequest

router = APIRouter(prefix="/monitor", tags=["monitor"])
logger = logging.getLogger(__name__)


def _get_monitor() -> EndpointMonitor:
    from .main import get_monitor
    return get_monitor()


def _health_payload(monitor: EndpointMonitor, endpoints: list[str]) -> dict:
    snapshots = {}
    for endpoint in endpoints:
        health = monitor.get_health(endpoint)
        snapshots[endpoint] = health.model_dump(mode="json") if health is not None else None
    return {"paused": monitor.is_paused(), "endpoints": snapshots}


@router.post("/endpoints", status_code=202)
async def start_monitoring(body: MonitorRequest):
    monitor = _get_monitor()
    monitor.start_monitoring(body.endpoint, is_new=body.is_new, deferred=body.deferred)
    return {
        "endpoint": body.endpoint,
        "paused": monitor.is_paused(),
        "status": monitor.status().get(body.endpoint),
    }


@router.delete("/endpoints")
async def stop_monitoring(endpoint: str = Query(..., min_length=1)):
    monitor = _get_monitor()
    monitor.stop_monitoring(endpoint)
    return {"endpoint": endpoint, "status": monitor.status().get(endpoint)}


@router.get("/endpoints")
async def list_endpoints():
    monitor = _get_monitor()
    return {"paused": monitor.is_paused(), "endpoints": monitor.status()}


@router.get("/health", response_model=EndpointHealthResponse)
async def endpoint_health(endpoint: str = Query(..., min_length=1)):
    """Latest snapshot for ``endpoint``; ``health`` is null until the first probe lands."""
    monitor = _get_monitor()
    return EndpointHealthResponse(
        endpoint=endpoint,
        paused=monitor.is_paused(),
        health=monitor.get_health(endpoint),
    )


@router.post("/pause")
async def pause_monitoring():
    monitor = _get_monitor()
    monitor.pause()
    return {"paused": monitor.is_paused()}


@router.post("/resume")
async def resume_monitoring():
    monitor = _get_monitor()
    monitor.resume()
    return {"paused": monitor.is_paused()}


@router.get("/events", include_in_schema=False)
async def health_events(request: Request, endpoint: list[str] | None = Query(default=None)):
    """Stream one ``health`` event per coalesced monitor notification."""
    monitor = _get_monitor()
    keepalive_seconds = max(5.0, float(settings.events_keepalive_seconds))
    changed = asyncio.Event()
    unsubscribe = monitor.subscribe(changed.set)

    def _targets() -> list[str]:
        return endpoint or list(monitor.status())

    async def event_stream():
        try:
            yield as_sse("meta", {"instance": settings.instance_id})
            yield as_sse("health", _health_payload(monitor, _targets()))
            while True:
                if await request.is_disconnected():
                    break
                try:
                    await asyncio.wait_for(changed.wait(), timeout=keepalive_seconds)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                changed.clear()
                yield as_sse("health", _health_payload(monitor, _targets()))
        finally:
            unsubscribe()

    headers = {
        "Cache-Control": "no-cache, no-transform",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)
