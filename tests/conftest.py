"""Pytest configuration and fixtures."""

from pathlib import Path
from typing import Any

import pytest

from kb_relay.config import Config, DiscordConfig, RateLimitConfig
from kb_relay.platform.base import Sentiment


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingReply:
    """Reply/FeedbackReply double that records what the orchestrator sent."""

    def __init__(self, response_message_id: str = "bot-msg-1"):
        self.response_message_id = response_message_id
        self.calls: list[tuple[str, Any]] = []
        self.typing_count = 0
        self.fail_answer = False
        self.fail_ack = False

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def send_typing(self) -> None:
        self.typing_count += 1

    async def reply_help(self) -> None:
        self.calls.append(("help", None))

    async def reply_rate_limited(self, wait_seconds: int, remaining: int) -> None:
        self.calls.append(("rate_limited", (wait_seconds, remaining)))

    async def reply_answer(
        self, question: str, answer: str, sources: list[dict[str, Any]]
    ) -> str:
        if self.fail_answer:
            raise RuntimeError("discord unavailable")
        self.calls.append(("answer", (question, answer)))
        return self.response_message_id

    async def reply_error(self) -> None:
        self.calls.append(("error", None))

    async def defer(self) -> None:
        self.calls.append(("defer", None))

    async def ack_feedback(self, sentiment: Sentiment) -> None:
        if self.fail_ack:
            raise RuntimeError("interaction expired")
        self.calls.append(("ack", sentiment))

    async def reply_feedback_expired(self) -> None:
        self.calls.append(("expired", None))

    async def reply_feedback_rate_limited(self, wait_seconds: int) -> None:
        self.calls.append(("feedback_rate_limited", wait_seconds))

    async def reply_feedback_error(self) -> None:
        self.calls.append(("feedback_error", None))


@pytest.fixture
def clock() -> FakeClock:
    """A clock starting at t=0ms."""
    return FakeClock()


@pytest.fixture
def default_config() -> Config:
    """Provide a default configuration for testing."""
    return Config()


@pytest.fixture
def rate_limit_config() -> RateLimitConfig:
    """Rate limit config with the production window and quota, enabled."""
    return RateLimitConfig(enabled=True, window_ms=60_000, max_requests=30, redis_enabled=False)


@pytest.fixture
def discord_config() -> DiscordConfig:
    """Discord config with a short typing interval."""
    return DiscordConfig(command_prefix="/elsa", typing_interval_seconds=0.01)


@pytest.fixture
def reply() -> RecordingReply:
    return RecordingReply()


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_content = """
discord:
  command_prefix: "/kb"

rate_limit:
  enabled: true
  window_ms: 30000
  max_requests: 5
  redis_enabled: false

dedup:
  max_tracked: 50

feedback:
  ttl_ms: 120000

backend:
  url: "http://backend.test:3333"
  max_attempts: 3

health:
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path
