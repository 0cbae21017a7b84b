"""Health status and metrics sink."""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from kb_relay.core.logging import SessionStats

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Tracks connection status and activity counters.

    ``record_*`` calls are synchronous increments: callers never await them
    and they never raise into the caller.
    """

    def __init__(self, metrics_enabled: bool = False):
        self.metrics_enabled = metrics_enabled
        self.stats = SessionStats()
        self.start_time = time.time()
        self.platform_connected = False
        self.backend_connected = False
        self.shared_store_connected = False
        self.last_health_check: datetime | None = None

    @property
    def healthy(self) -> bool:
        return self.platform_connected and self.backend_connected

    @property
    def uptime_ms(self) -> int:
        return int((time.time() - self.start_time) * 1000)

    def set_platform_status(self, connected: bool) -> None:
        self.platform_connected = connected
        logger.info(f"Platform status: {'connected' if connected else 'disconnected'}")

    def set_backend_status(self, connected: bool) -> None:
        self.backend_connected = connected
        logger.info(f"Backend status: {'connected' if connected else 'disconnected'}")

    def set_shared_store_status(self, connected: bool) -> None:
        self.shared_store_connected = connected
        logger.info(f"Shared store status: {'connected' if connected else 'disconnected'}")

    def _record(self, stat: str, amount: int = 1) -> None:
        try:
            self.stats.increment(stat, amount)
        except Exception:
            logger.exception(f"Failed to record {stat}")

    def record_received(self) -> None:
        self._record("messages_received")

    def record_message(self) -> None:
        self._record("messages_processed")

    def record_command(self) -> None:
        self._record("commands_executed")

    def record_feedback(self) -> None:
        self._record("feedback_submitted")

    def record_error(self) -> None:
        self._record("errors_encountered")

    def record_rate_limit(self) -> None:
        self._record("rate_limit_hits")

    def record_duplicate(self) -> None:
        self._record("duplicates_dropped")

    def record_response_time(self, duration_ms: int) -> None:
        try:
            self.stats.record_response_time(duration_ms)
        except Exception:
            logger.exception("Failed to record response time")

    def health(self) -> dict[str, Any]:
        self.last_health_check = datetime.now(timezone.utc)
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "timestamp": self.last_health_check.isoformat(),
            "uptime": self.uptime_ms,
            "services": {
                "discord": "connected" if self.platform_connected else "disconnected",
                "backend": "connected" if self.backend_connected else "disconnected",
                "redis": "connected" if self.shared_store_connected else "disconnected",
            },
        }

    def metrics(self) -> dict[str, Any]:
        data = self.stats.summary()
        data["uptime"] = self.uptime_ms
        data["timestamp"] = datetime.now(timezone.utc).isoformat()
        return data

    def status(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "platform_connected": self.platform_connected,
            "backend_connected": self.backend_connected,
            "shared_store_connected": self.shared_store_connected,
            "start_time": datetime.fromtimestamp(self.start_time, timezone.utc).isoformat(),
            "last_health_check": (
                self.last_health_check.isoformat() if self.last_health_check else None
            ),
            "uptime": self.uptime_ms,
        }
