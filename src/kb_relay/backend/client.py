"""HTTP client for the knowledge-base backend."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from kb_relay.config import BackendConfig

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = "I apologize, but I couldn't find a specific answer to your question."

# Bot-side feedback names to the values /api/bot/feedback accepts
FEEDBACK_VALUES = {
    "helpful": "positive",
    "not_helpful": "negative",
    "neutral": "neutral",
}


def make_session_id(user_id: str | None) -> str:
    """Session id in the backend's ``discord-{user}-{ms}`` form."""
    return f"discord-{user_id}-{int(time.time() * 1000)}"


class BackendError(Exception):
    """The backend could not produce a usable response."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


@dataclass
class ChatResponse:
    """Answer returned by the backend chat endpoint."""

    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    response_id: str | None = None
    confidence: float = 0.0


def format_sources(raw: list[Any]) -> list[dict[str, Any]]:
    """Normalize backend sources to ``{"title", "url", "id"}`` dicts."""
    sources = []
    for i, source in enumerate(raw):
        if isinstance(source, str):
            sources.append({"title": source, "url": None, "id": None})
            continue
        if not isinstance(source, dict):
            continue
        sources.append({
            "title": source.get("title") or source.get("name") or f"Article {i + 1}",
            "url": source.get("url"),
            "id": source.get("id"),
        })
    return sources


class ChatBackendClient:
    """Talks to the backend's bot endpoints.

    Chat requests are retried ``max_attempts`` times with a linear backoff;
    feedback and user-mapping writes are attempted once.
    """

    USER_AGENT = "kb-relay/1.0"

    def __init__(self, config: BackendConfig):
        self._config = config
        self._base_url = config.url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"User-Agent": self.USER_AGENT, "Content-Type": "application/json"}
            if self._config.api_key:
                headers["X-Bot-Api-Key"] = self._config.api_key.get_secret_value()
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        session = await self._get_session()
        url = f"{self._base_url}{path}"
        start = time.perf_counter()
        try:
            async with session.post(url, json=payload) as response:
                elapsed_ms = (time.perf_counter() - start) * 1000
                if response.status >= 400:
                    logger.warning(f"API call failed: POST {path} -> {response.status} ({elapsed_ms:.0f}ms)")
                    raise BackendError(f"HTTP {response.status} from {path}", status=response.status)
                logger.debug(f"API call: POST {path} -> {response.status} ({elapsed_ms:.0f}ms)")
                return await response.json(content_type=None) or {}
        except aiohttp.ClientError as e:
            raise BackendError(f"Request to {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise BackendError(f"Request to {path} timed out") from e

    async def get_chat_response(self, question: str, context: dict[str, Any]) -> ChatResponse:
        """Ask the backend a question on behalf of a user.

        Args:
            question: The user's question text
            context: Actor context (user_id, username, channel_id, guild_id)

        Returns:
            ChatResponse with answer and sources. ``response_id`` is the
            session id the feedback endpoint expects later.

        Raises:
            BackendError: When every attempt failed
        """
        session_id = context.get("session_id") or make_session_id(context.get("user_id"))
        payload = {
            "message": question,
            "discordUserId": context.get("user_id"),
            "discordChannelId": context.get("channel_id"),
            "sessionId": session_id,
        }

        attempts = self._config.max_attempts
        attempt = 0
        while True:
            attempt += 1
            try:
                logger.info(f"UPSTREAM: chat request attempt {attempt}/{attempts}")
                data = await self._post("/api/bot/chat", payload)
                if data.get("error"):
                    raise BackendError(str(data["error"]))
                return ChatResponse(
                    answer=data.get("response") or data.get("answer") or FALLBACK_ANSWER,
                    sources=format_sources(data.get("sources") or []),
                    response_id=data.get("responseId") or data.get("sessionId") or session_id,
                    confidence=float(data.get("confidence") or 0.0),
                )
            except BackendError as e:
                logger.warning(f"UPSTREAM: attempt {attempt}/{attempts} failed: {e}")
                if attempt >= attempts:
                    logger.error(f"UPSTREAM: all attempts failed: {e}")
                    raise
                await asyncio.sleep(attempt * self._config.retry_backoff_seconds)

    async def submit_feedback(
        self,
        session_id: str,
        user_id: str,
        feedback: str,
        *,
        channel_id: str | None = None,
        message_id: str | None = None,
        question: str = "",
        answer: str = "",
        username: str | None = None,
        platform: str = "discord",
    ) -> dict[str, Any]:
        """Forward a feedback click to the backend.

        ``feedback`` may be given in the bot's vocabulary (helpful,
        not_helpful, neutral); it is sent as positive/negative/neutral.
        """
        payload = {
            "sessionId": session_id,
            "discordUserId": user_id,
            "discordChannelId": channel_id,
            "feedback": FEEDBACK_VALUES.get(feedback, feedback),
            "messageId": message_id,
            "question": question,
            "answer": answer,
            "username": username,
            "platform": platform,
        }
        return await self._post("/api/bot/feedback", payload)

    async def create_user_mapping(self, user_id: str, username: str) -> dict[str, Any]:
        """Record the platform user so the backend can attribute questions."""
        return await self._post(
            "/api/bot/user-mapping",
            {"discordUserId": user_id, "discordUsername": username},
        )

    async def health_check(self) -> bool:
        """True when the backend's /health endpoint answers 200."""
        session = await self._get_session()
        try:
            async with session.get(
                f"{self._base_url}/health", timeout=aiohttp.ClientTimeout(total=5)
            ) as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Backend health check failed: {e}")
            return False
