"""Tests for configuration loading and the application lifespan."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from relay import main
from relay.config import get_watchlist_entries, load_watchlist_config, settings


class TestWatchlist:
    def test_mixed_entries(self):
        entries = get_watchlist_entries(
            {"endpoints": ["http://a:11434/", {"url": "http://b:11434", "new": True, "deferred": True}]}
        )
        assert entries == [
            {"url": "http://a:11434/", "new": False, "deferred": False},
            {"url": "http://b:11434", "new": True, "deferred": True},
        ]

    def test_empty_config(self):
        assert get_watchlist_entries({}) == []

    def test_entry_without_url_is_rejected(self):
        with pytest.raises(ValueError, match="Invalid watchlist entry"):
            get_watchlist_entries({"endpoints": [{"new": True}]})

    def test_missing_file(self, monkeypatch, tmp_path):
        monkeypatch.setattr(settings, "watchlist_path", str(tmp_path / "missing.yaml"))
        with pytest.raises(FileNotFoundError):
            load_watchlist_config()


class TestApplication:
    def test_health_reports_watchlist_endpoints(self, monkeypatch, tmp_path):
        watchlist = tmp_path / "endpoints.yaml"
        watchlist.write_text(
            "endpoints:\n"
            "  - url: http://ollama.test:11434\n"
            "    new: true\n"
            "    deferred: true\n"
        )
        monkeypatch.setattr(settings, "watchlist_path", str(watchlist))
        monkeypatch.setattr(settings, "dns_resolution_delay_seconds", 60.0)
        monkeypatch.setattr(settings, "status_webhook_url", "")

        with TestClient(main.app) as client:
            body = client.get("/health").json()
            health = client.get("/monitor/health", params={"endpoint": "http://ollama.test:11434"}).json()

        assert body["status"] == "healthy"
        assert body["status_reports"] is None
        assert body["endpoints"]["http://ollama.test:11434"]["state"] == "deferred"
        assert health["health"]["connected"] is False

    def test_starts_without_watchlist(self, monkeypatch, tmp_path):
        monkeypatch.setattr(settings, "watchlist_path", str(tmp_path / "missing.yaml"))

        with TestClient(main.app) as client:
            body = client.get("/health").json()

        assert body["endpoints"] == {}

    def test_monitor_unavailable_outside_lifespan(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            main.get_monitor()
