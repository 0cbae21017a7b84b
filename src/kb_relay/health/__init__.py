"""Health monitoring for the relay process."""

from kb_relay.health.monitor import HealthMonitor
from kb_relay.health.server import create_app

__all__ = ["HealthMonitor", "create_app"]
