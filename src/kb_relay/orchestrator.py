"""Main orchestrator tying the relay components together."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum

from kb_relay.backend import ChatBackendClient
from kb_relay.config import DiscordConfig
from kb_relay.core import (
    BackgroundDispatcher,
    DedupGuard,
    FeedbackCorrelator,
    FeedbackRecord,
    TypingKeepalive,
    event_key,
    log_timing,
)
from kb_relay.health import HealthMonitor
from kb_relay.platform.base import FeedbackEvent, FeedbackReply, InboundMessage, Reply
from kb_relay.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

# How often to log session stats (every N messages)
STATS_LOG_INTERVAL = 50

HELP_WORDS = ("help", "commands", "?")
MIN_QUESTION_LENGTH = 3


class Outcome(Enum):
    """Terminal state of one inbound event."""

    IGNORED = "ignored"  # Not addressed to the bot
    DROPPED = "dropped"  # Duplicate event
    RATE_LIMITED = "rate_limited"
    HELP = "help"
    RESPONDED = "responded"
    FAILED = "failed"
    FEEDBACK_RECORDED = "feedback_recorded"
    FEEDBACK_EXPIRED = "feedback_expired"


@dataclass
class ProcessingResult:
    """Result of processing an inbound event."""

    outcome: Outcome
    reason: str = ""
    response_message_id: str | None = None


class Orchestrator:
    """Runs each inbound event through dedup, rate limiting and dispatch.

    Dedup and rate checks happen before the first suspending upstream call,
    so two near-simultaneous events from the same actor are serialized at
    those checks.
    """

    def __init__(
        self,
        config: DiscordConfig,
        limiter: RateLimiter,
        dedup: DedupGuard,
        correlator: FeedbackCorrelator,
        backend: ChatBackendClient,
        monitor: HealthMonitor,
        dispatcher: BackgroundDispatcher,
        upstream_timeout_seconds: float = 30.0,
    ):
        self._config = config
        self._limiter = limiter
        self._dedup = dedup
        self._correlator = correlator
        self._backend = backend
        self._monitor = monitor
        self._dispatcher = dispatcher
        self._upstream_timeout = upstream_timeout_seconds

    def is_addressed(self, message: InboundMessage) -> bool:
        """Mentioned, a direct message, or prefixed with the command."""
        return (
            message.mentioned
            or message.is_dm
            or message.content.startswith(self._config.command_prefix)
        )

    def extract_question(self, message: InboundMessage) -> str:
        """Strip the command prefix or mention token from the message."""
        content = message.content
        if content.startswith(self._config.command_prefix):
            content = content[len(self._config.command_prefix):]
        elif message.mention_token:
            content = content.replace(message.mention_token, "", 1)
        return content.strip()

    async def handle_message(self, message: InboundMessage, reply: Reply) -> ProcessingResult:
        """Handle an incoming user message."""
        if not self.is_addressed(message):
            return ProcessingResult(Outcome.IGNORED, "not addressed")

        self._monitor.record_received()

        key = event_key(message.event_id, message.actor_id)
        if not self._dedup.admit_once(key):
            logger.debug(f"DEDUP: skipping duplicate {key}")
            self._monitor.record_duplicate()
            return ProcessingResult(Outcome.DROPPED, "duplicate")

        rate = await self._limiter.check_limit(message.actor_id, "message")
        if not rate.allowed:
            self._limiter.log_rate_limit(message.actor_id, "message", rate.remaining)
            self._monitor.record_rate_limit()
            try:
                await reply.reply_rate_limited(
                    self._limiter.wait_seconds(rate), rate.remaining
                )
            except Exception as e:
                logger.warning(f"Failed to send rate limit notice: {e}")
            return ProcessingResult(Outcome.RATE_LIMITED, f"remaining={rate.remaining}")

        question = self.extract_question(message)
        if question.lower() in HELP_WORDS or len(question) < MIN_QUESTION_LENGTH:
            try:
                await reply.reply_help()
            except Exception as e:
                logger.warning(f"Failed to send help message: {e}")
            return ProcessingResult(Outcome.HELP)

        logger.info(f"MSG_RECEIVED: <{message.actor_name}> {question[:100]}")
        self._monitor.record_message()
        if message.content.startswith(self._config.command_prefix):
            self._monitor.record_command()

        stats = self._monitor.stats
        if stats.messages_processed % STATS_LOG_INTERVAL == 0:
            logger.info(f"SESSION_STATS: {stats.summary_line()}")

        async with TypingKeepalive(reply.send_typing, self._config.typing_interval_seconds):
            try:
                start = time.perf_counter()
                with log_timing(logger, "Upstream chat"):
                    response = await asyncio.wait_for(
                        self._backend.get_chat_response(
                            question,
                            {
                                "user_id": message.actor_id,
                                "username": message.actor_name,
                                "channel_id": message.channel_id,
                                "guild_id": message.guild_id,
                            },
                        ),
                        timeout=self._upstream_timeout,
                    )
                self._monitor.record_response_time(int((time.perf_counter() - start) * 1000))

                response_message_id = await reply.reply_answer(
                    question, response.answer, response.sources
                )
            except Exception as e:
                logger.error(f"UPSTREAM: failed to answer {key}: {type(e).__name__}: {e}")
                self._monitor.record_error()
                try:
                    await reply.reply_error()
                except Exception as notify_error:
                    logger.error(f"Failed to send error notice: {notify_error}")
                return ProcessingResult(Outcome.FAILED, type(e).__name__)

        self._correlator.register(
            response_message_id,
            FeedbackRecord(
                question=question,
                answer=response.answer,
                actor_id=message.actor_id,
                actor_name=message.actor_name,
                response_id=response.response_id,
                sources=response.sources,
                channel_id=message.channel_id,
                guild_id=message.guild_id,
                source_event_id=message.event_id,
            ),
        )

        actor_id, actor_name = message.actor_id, message.actor_name
        self._dispatcher.submit(
            f"user-mapping:{actor_id}",
            lambda: self._backend.create_user_mapping(actor_id, actor_name),
        )

        logger.info(f"RESPONDED: {actor_name} <- {response_message_id}")
        return ProcessingResult(Outcome.RESPONDED, response_message_id=response_message_id)

    async def handle_feedback(
        self, event: FeedbackEvent, reply: FeedbackReply
    ) -> ProcessingResult:
        """Handle a click on a feedback button."""
        rate = await self._limiter.check_limit(event.actor_id, "feedback")
        if not rate.allowed:
            self._limiter.log_rate_limit(event.actor_id, "feedback", rate.remaining)
            self._monitor.record_rate_limit()
            try:
                await reply.reply_feedback_rate_limited(self._limiter.wait_seconds(rate))
            except Exception as e:
                logger.warning(f"Failed to send feedback rate limit notice: {e}")
            return ProcessingResult(Outcome.RATE_LIMITED, f"remaining={rate.remaining}")

        record = self._correlator.resolve(event.response_message_id)
        if record is None:
            # Expected after the TTL or for unknown ids; not a system error
            logger.info(f"FEEDBACK: no session for {event.response_message_id}")
            try:
                await reply.reply_feedback_expired()
            except Exception as e:
                logger.warning(f"Failed to send expired-session notice: {e}")
            return ProcessingResult(Outcome.FEEDBACK_EXPIRED)

        # Discord wants an answer within 3s; the backend call can take longer
        try:
            await reply.defer()
        except Exception as e:
            logger.warning(f"Failed to defer feedback interaction: {e}")

        try:
            await self._backend.submit_feedback(
                record.response_id or event.response_message_id,
                record.actor_id,
                event.sentiment.backend_value,
                channel_id=event.channel_id,
                message_id=event.response_message_id,
                question=record.question,
                answer=record.answer,
                username=record.actor_name,
            )
        except Exception as e:
            logger.error(f"FEEDBACK: failed for {event.response_message_id}: {e}")
            self._monitor.record_error()
            try:
                await reply.reply_feedback_error()
            except Exception as notify_error:
                logger.error(f"Failed to send feedback error notice: {notify_error}")
            return ProcessingResult(Outcome.FAILED, type(e).__name__)

        # Accepted by the backend: a later click must not submit it again
        self._correlator.discard(event.response_message_id)
        self._monitor.record_feedback()
        logger.info(
            f"FEEDBACK: {event.sentiment.value} for \"{record.question[:100]}\" "
            f"from {record.actor_name}"
        )

        try:
            await reply.ack_feedback(event.sentiment)
        except Exception as e:
            logger.warning(f"Failed to acknowledge feedback: {e}")

        return ProcessingResult(
            Outcome.FEEDBACK_RECORDED, response_message_id=event.response_message_id
        )
