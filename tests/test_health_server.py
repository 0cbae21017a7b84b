"""Tests for the health server endpoints."""

import pytest
from fastapi.testclient import TestClient

from kb_relay.core import DedupGuard, FeedbackCorrelator, FeedbackRecord
from kb_relay.health import HealthMonitor, create_app
from kb_relay.ratelimit import LocalWindowStore, RateLimiter


@pytest.fixture
def monitor() -> HealthMonitor:
    return HealthMonitor()


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_unhealthy_until_connected(self, monitor):
        client = TestClient(create_app(monitor))
        response = client.get("/health")
        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["services"]["discord"] == "disconnected"

    def test_healthy_when_platform_and_backend_up(self, monitor):
        monitor.set_platform_status(True)
        monitor.set_backend_status(True)
        client = TestClient(create_app(monitor))
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"]["redis"] == "disconnected"
        assert data["uptime"] >= 0

    def test_shared_store_does_not_affect_health(self, monitor):
        """Redis is optional: the local fallback keeps the bot healthy."""
        monitor.set_platform_status(True)
        monitor.set_backend_status(True)
        monitor.set_shared_store_status(False)
        assert monitor.healthy


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    def test_disabled_returns_404(self, monitor):
        client = TestClient(create_app(monitor))
        response = client.get("/metrics")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}

    def test_enabled_returns_counters(self):
        monitor = HealthMonitor(metrics_enabled=True)
        monitor.record_message()
        monitor.record_rate_limit()
        monitor.record_response_time(120)
        monitor.record_response_time(80)

        client = TestClient(create_app(monitor))
        data = client.get("/metrics").json()

        assert data["messages_processed"] == 1
        assert data["rate_limit_hits"] == 1
        assert data["response_time"]["count"] == 2
        assert data["response_time"]["average"] == 100


class TestStatusEndpoint:
    """Tests for GET /status."""

    def test_includes_component_state(self, monitor, clock):
        limiter = RateLimiter(LocalWindowStore(clock=clock), 60_000, 30, clock=clock)
        dedup = DedupGuard()
        dedup.admit_once("m1-u1")
        correlator = FeedbackCorrelator(clock=clock)
        correlator.register("bot-1", FeedbackRecord("q", "a", "u1", "alice"))

        client = TestClient(create_app(monitor, limiter, dedup, correlator))
        data = client.get("/status").json()

        assert data["healthy"] is False
        assert data["processed_messages"] == 1
        assert data["pending_feedback"] == 1
        assert data["rate_limit"]["backend"] == "memory"

    def test_without_components(self, monitor):
        client = TestClient(create_app(monitor))
        data = client.get("/status").json()
        assert "rate_limit" not in data
        assert data["last_health_check"] is None
