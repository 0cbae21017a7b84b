"""Platform-neutral inbound events and the reply surface the orchestrator uses."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class Sentiment(Enum):
    """Feedback button the user clicked."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"

    @property
    def backend_value(self) -> str:
        return {
            Sentiment.POSITIVE: "helpful",
            Sentiment.NEGATIVE: "not_helpful",
            Sentiment.NEUTRAL: "neutral",
        }[self]


@dataclass
class InboundMessage:
    """A user message that may be addressed to the bot."""

    event_id: str
    actor_id: str
    actor_name: str
    content: str
    channel_id: str | None = None
    guild_id: str | None = None
    mentioned: bool = False
    is_dm: bool = False
    mention_token: str | None = None  # e.g. "<@1234>", stripped from the question


@dataclass
class FeedbackEvent:
    """A click on one of the feedback buttons under an answer."""

    response_message_id: str
    actor_id: str
    sentiment: Sentiment
    channel_id: str | None = None


class Reply(Protocol):
    """Ways the orchestrator can answer the author of a message."""

    async def send_typing(self) -> None: ...

    async def reply_help(self) -> None: ...

    async def reply_rate_limited(self, wait_seconds: int, remaining: int) -> None: ...

    async def reply_answer(
        self, question: str, answer: str, sources: list[dict[str, Any]]
    ) -> str:
        """Send the answer with feedback buttons. Returns the sent message id."""
        ...

    async def reply_error(self) -> None: ...


class FeedbackReply(Protocol):
    """Ways the orchestrator can answer a feedback click."""

    async def defer(self) -> None:
        """Acknowledge the click before a slow backend call."""
        ...

    async def ack_feedback(self, sentiment: Sentiment) -> None: ...

    async def reply_feedback_expired(self) -> None: ...

    async def reply_feedback_rate_limited(self, wait_seconds: int) -> None: ...

    async def reply_feedback_error(self) -> None: ...
