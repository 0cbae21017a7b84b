"""FastAPI server exposing health, metrics and status for the relay."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from kb_relay.health.monitor import HealthMonitor

if TYPE_CHECKING:
    from kb_relay.core.feedback import FeedbackCorrelator
    from kb_relay.core.dedup import DedupGuard
    from kb_relay.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


def create_app(
    monitor: HealthMonitor,
    limiter: RateLimiter | None = None,
    dedup: DedupGuard | None = None,
    correlator: FeedbackCorrelator | None = None,
) -> FastAPI:
    """Create the health server FastAPI app.

    Args:
        monitor: Source of status flags and counters.
        limiter: Optional rate limiter, reported under /status.
        dedup: Optional dedup guard, its size is reported under /status.
        correlator: Optional feedback correlator, its size is reported under /status.

    Returns:
        A configured FastAPI application.
    """
    app = FastAPI(title="kb-relay health")

    @app.get("/health")
    async def health():
        """200 when platform and backend are connected, 503 otherwise."""
        body = monitor.health()
        return JSONResponse(body, status_code=200 if monitor.healthy else 503)

    @app.get("/metrics")
    async def metrics():
        """Activity counters (only when metrics are enabled)."""
        if not monitor.metrics_enabled:
            return JSONResponse({"error": "Not Found"}, status_code=404)
        return monitor.metrics()

    @app.get("/status")
    async def status():
        """Connection flags plus in-process state sizes."""
        body = monitor.status()
        if limiter is not None:
            body["rate_limit"] = await limiter.stats()
        if dedup is not None:
            body["processed_messages"] = len(dedup)
        if correlator is not None:
            body["pending_feedback"] = len(correlator)
        return body

    return app
