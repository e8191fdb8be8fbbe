"""Ollama proxy routes for model listing and prompt generation."""

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from .backend_client import client
from .http_utils import json_or_error_response, upstream_error_response

router = APIRouter(prefix="/api/proxy", tags=["proxy"])
logger = logging.getLogger(__name__)

ENDPOINT_HEADER = "X-Ollama-Endpoint"


def _require_endpoint(request: Request) -> str:
    endpoint = request.headers.get(ENDPOINT_HEADER)
    if not endpoint:
        raise HTTPException(status_code=400, detail="Ollama endpoint not provided")
    return endpoint


def _parse_json_object(body: bytes) -> dict[str, Any]:
    if not body:
        raise HTTPException(status_code=400, detail="Request body is required")
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON body: {e.msg}") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return payload


@router.post("/generate")
async def generate(request: Request):
    """Forward a generate call to the endpoint named in the request header."""
    endpoint = _require_endpoint(request)
    payload = _parse_json_object(await request.body())

    resp = await client.request(
        endpoint,
        "POST",
        f"{endpoint}/api/generate",
        json=payload,
        headers={"Accept": "application/json"},
        timeout_type="llm",
    )
    if not resp.is_success:
        logger.warning("Generate on %s failed with status %d", endpoint, resp.status_code)
        return upstream_error_response(resp)
    return json_or_error_response(resp, "Invalid JSON response from Ollama")


@router.get("/models")
async def list_models(request: Request):
    """List models installed on the endpoint named in the request header."""
    endpoint = _require_endpoint(request)
    resp = await client.request(
        endpoint,
        "GET",
        f"{endpoint}/api/tags",
        headers={"Accept": "application/json"},
        timeout_type="default",
    )
    if not resp.is_success:
        return upstream_error_response(resp)
    try:
        data = resp.json()
    except ValueError as e:
        raise HTTPException(
            status_code=502,
            detail=f"Invalid JSON response: {resp.text[:200]}",
        ) from e

    models = data.get("models") if isinstance(data, dict) else None
    return {"models": models if isinstance(models, list) else []}
