"""HTTP helpers for relay route handlers."""

import json

from fastapi.responses import JSONResponse


def json_or_error_response(resp, error_label: str) -> JSONResponse:
    """Return upstream JSON response or a stable relay error envelope."""
    try:
        payload = resp.json()
    except ValueError:
        payload = {
            "error": error_label,
            "details": resp.text[:1000],
        }
    return JSONResponse(status_code=resp.status_code, content=payload)


def upstream_error_response(resp) -> JSONResponse:
    """Wrap a non-2xx Ollama answer, preserving its status code."""
    return JSONResponse(
        status_code=resp.status_code,
        content={
            "error": f"Ollama API error: {resp.status_code}",
            "details": resp.text[:1000],
        },
    )


def as_sse(event_name: str, payload: dict) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, separators=(',', ':'))}\n\n"
