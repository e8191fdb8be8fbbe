import asyncio
import logging
import time
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

# Timeout presets per request type (seconds)
TIMEOUTS = {
    "llm": 300.0,
    "status": 10.0,
    "default": 60.0,
}


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one health probe. Failure causes are not distinguished."""

    ok: bool
    elapsed_ms: float


class BackendClient:
    """Async HTTP client for Ollama endpoints and the status webhook."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client: httpx.AsyncClient | None = None
        self._transport = transport

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def stop(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        """Return initialized client or raise a clear runtime error."""
        if self._client is None:
            raise RuntimeError("Backend client is not started")
        return self._client

    async def request(
        self,
        endpoint: str,
        method: str,
        url: str,
        *,
        timeout_type: str = "default",
        max_retries: int = 3,
        **kwargs,
    ) -> httpx.Response:
        """Send request, retrying connection failures with back-off."""
        timeout = TIMEOUTS.get(timeout_type, TIMEOUTS["default"])
        delays = [0.5, 1.0, 2.0]

        last_exc: Exception | None = None
        for attempt in range(max_retries):
            try:
                return await self._require_client().request(
                    method, url, timeout=timeout, **kwargs
                )
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                last_exc = e
                if attempt < max_retries - 1:
                    delay = delays[min(attempt, len(delays) - 1)]
                    logger.warning(
                        "%s attempt %d failed: %s (retry in %.1fs)",
                        endpoint, attempt + 1, e, delay,
                    )
                    await asyncio.sleep(delay)

        raise last_exc

    async def probe(self, endpoint: str, timeout: float) -> ProbeResult:
        """List models on ``endpoint``; any error or unexpected payload is unhealthy."""
        started = time.perf_counter()
        try:
            resp = await self._require_client().get(
                f"{endpoint}/api/tags",
                headers={"Accept": "application/json"},
                timeout=timeout,
            )
            ok = resp.is_success and isinstance(resp.json(), dict)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Probe of %s failed: %s", endpoint, e)
            ok = False
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return ProbeResult(ok=ok, elapsed_ms=elapsed_ms)

    async def report_status(self, url: str, endpoint: str, message: str) -> None:
        """POST an endpoint error status to the status webhook."""
        timeout = TIMEOUTS["status"]
        resp = await self._require_client().post(
            url,
            json={"endpoint": endpoint, "status": "error", "error": message},
            timeout=timeout,
        )
        resp.raise_for_status()


# Singleton
client = BackendClient()
