import os
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    watchlist_path: str = "/config/endpoints.yaml"
    log_level: str = "INFO"
    health_check_interval_seconds: float = 3.0
    health_check_timeout_seconds: float = 1.0
    max_consecutive_failures: int = 5
    dns_resolution_delay_seconds: float = 5.0
    new_endpoint_grace_period_seconds: float = 120.0
    notify_window_seconds: float = 0.1
    status_webhook_url: str = ""
    status_report_queue_size: int = 100
    events_keepalive_seconds: float = 15.0
    instance_id: str = os.getenv("HOSTNAME", "ollama-relay")

    model_config = {"env_prefix": "RELAY_"}


settings = Settings()


def load_watchlist_config() -> dict:
    """Load the start-up endpoint watchlist from YAML config."""
    config_path = Path(settings.watchlist_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Watchlist config not found: {config_path}")
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def get_watchlist_entries(config: dict) -> list[dict]:
    """Normalize watchlist entries to ``{"url", "new", "deferred"}`` dicts.

    Entries may be bare URL strings or mappings. The URL is kept verbatim.
    """
    raw_entries = config.get("endpoints") or []
    if not isinstance(raw_entries, list):
        raise ValueError("Watchlist 'endpoints' must be a list")
    entries = []
    for raw in raw_entries:
        if isinstance(raw, str):
            raw = {"url": raw}
        if not isinstance(raw, dict) or not raw.get("url"):
            raise ValueError(f"Invalid watchlist entry: {raw!r}")
        entries.append(
            {
                "url": str(raw["url"]),
                "new": bool(raw.get("new", False)),
                "deferred": bool(raw.get("deferred", False)),
            }
        )
    return entries
