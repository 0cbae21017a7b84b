"""Discord client for the relay bot."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from kb_relay.platform.base import FeedbackEvent, InboundMessage, Sentiment

if TYPE_CHECKING:
    from kb_relay.health import HealthMonitor
    from kb_relay.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

FEEDBACK_PREFIX = "feedback"
MAX_EMBED_LENGTH = 4000  # Discord's embed description limit is 4096
MAX_SOURCES = 8

COLOR_ANSWER = 0x57F287
COLOR_SOURCES = 0x5865F2
COLOR_ERROR = 0xED4245
COLOR_RATE_LIMIT = 0xFF6B6B

GENERIC_ERROR = "I encountered an error while processing your question. Please try again later."
EXPIRED_SESSION = "Feedback session expired. Please ask your question again."
HELP_TEXT = (
    "Ask me anything about our knowledge base:\n"
    "• **Command:** `{prefix} What is the MOQ for lanyards?`\n"
    "• **Mention me** with your question\n"
    "• **Direct message** me your question\n\n"
    "Rate answers with ✅ (helpful), ❌ (not helpful) or 😐 (neutral)."
)


def feedback_custom_id(sentiment: Sentiment, event_id: str) -> str:
    return f"{FEEDBACK_PREFIX}_{sentiment.value}_{event_id}"


def parse_feedback_custom_id(custom_id: str) -> Sentiment | None:
    """Sentiment encoded in a feedback button id, or None for other components."""
    parts = custom_id.split("_", 2)
    if len(parts) < 2 or parts[0] != FEEDBACK_PREFIX:
        return None
    try:
        return Sentiment(parts[1])
    except ValueError:
        return None


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


class FeedbackView(discord.ui.View):
    """The three feedback buttons attached to every answer."""

    def __init__(self, event_id: str):
        super().__init__(timeout=None)
        for sentiment, label, style in (
            (Sentiment.POSITIVE, "✅", discord.ButtonStyle.success),
            (Sentiment.NEGATIVE, "❌", discord.ButtonStyle.secondary),
            (Sentiment.NEUTRAL, "😐", discord.ButtonStyle.secondary),
        ):
            self.add_item(discord.ui.Button(
                label=label,
                style=style,
                custom_id=feedback_custom_id(sentiment, event_id),
            ))


class MessageReply:
    """Reply surface for a user message."""

    def __init__(self, message: discord.Message, command_prefix: str):
        self._message = message
        self._command_prefix = command_prefix

    async def send_typing(self) -> None:
        await self._message.channel.typing()

    async def reply_help(self) -> None:
        embed = discord.Embed(
            title="Knowledge Base Assistant",
            description=HELP_TEXT.format(prefix=self._command_prefix),
            color=COLOR_SOURCES,
        )
        await self._message.reply(embed=embed)

    async def reply_rate_limited(self, wait_seconds: int, remaining: int) -> None:
        embed = discord.Embed(
            title="Rate Limit Reached",
            description=(
                "You're sending messages too quickly! "
                f"Please try again in **{wait_seconds} seconds**."
            ),
            color=COLOR_RATE_LIMIT,
        )
        embed.add_field(name="Remaining Requests", value=str(remaining))
        await self._message.reply(embed=embed)

    async def reply_answer(
        self, question: str, answer: str, sources: list[dict[str, Any]]
    ) -> str:
        embeds = [
            discord.Embed(
                title="Knowledge Base Response",
                description=truncate(answer, MAX_EMBED_LENGTH),
                color=COLOR_ANSWER,
            ).set_footer(text=f"Question: {truncate(question, 100)}")
        ]
        if sources:
            lines = []
            for i, source in enumerate(sources[:MAX_SOURCES], start=1):
                if source.get("url"):
                    lines.append(f"**{i}.** [{source['title']}]({source['url']})")
                else:
                    lines.append(f"**{i}.** {source['title']}")
            embeds.append(discord.Embed(
                title="Knowledge Base Sources",
                description="\n".join(lines),
                color=COLOR_SOURCES,
            ))
        sent = await self._message.reply(
            embeds=embeds, view=FeedbackView(str(self._message.id))
        )
        return str(sent.id)

    async def reply_error(self) -> None:
        embed = discord.Embed(title="Something Went Wrong", description=GENERIC_ERROR, color=COLOR_ERROR)
        await self._message.reply(embed=embed)


class InteractionReply:
    """Reply surface for a feedback button click.

    After ``defer`` the initial interaction response is spent, so later
    replies go through the followup webhook and the original message edit.
    """

    def __init__(self, interaction: discord.Interaction):
        self._interaction = interaction
        self._deferred = False

    async def defer(self) -> None:
        if self._interaction.response.is_done():
            return
        await self._interaction.response.defer()
        self._deferred = True

    async def _ephemeral(self, content: str) -> None:
        if self._deferred:
            await self._interaction.followup.send(content, ephemeral=True)
        else:
            await self._interaction.response.send_message(content, ephemeral=True)

    async def ack_feedback(self, sentiment: Sentiment) -> None:
        embed = discord.Embed(
            title="Feedback Received",
            description=(
                f"Thank you for your feedback! Your {sentiment.value} feedback "
                "helps improve our knowledge base."
            ),
            color=COLOR_ANSWER,
        )
        if self._deferred:
            await self._interaction.edit_original_response(embed=embed, view=None)
        else:
            await self._interaction.response.edit_message(embed=embed, view=None)

    async def reply_feedback_expired(self) -> None:
        await self._ephemeral(f"❌ {EXPIRED_SESSION}")

    async def reply_feedback_rate_limited(self, wait_seconds: int) -> None:
        await self._ephemeral(
            f"🚫 You're submitting feedback too quickly! Please wait {wait_seconds} seconds."
        )

    async def reply_feedback_error(self) -> None:
        await self._ephemeral("❌ Error submitting feedback. Please try again.")


class DiscordRelay(discord.Client):
    """Discord client that forwards messages and button clicks to the orchestrator."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        monitor: HealthMonitor,
        command_prefix: str = "/elsa",
        **kwargs: Any,
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.dm_messages = True
        super().__init__(intents=intents, **kwargs)
        self._orchestrator = orchestrator
        self._monitor = monitor
        self._command_prefix = command_prefix

    async def on_ready(self) -> None:
        logger.info(f"Discord bot logged in as {self.user} in {len(self.guilds)} servers")
        self._monitor.set_platform_status(True)
        await self.change_presence(
            activity=discord.Activity(
                type=discord.ActivityType.listening, name="Knowledge Base Questions"
            )
        )

    async def on_disconnect(self) -> None:
        self._monitor.set_platform_status(False)

    def to_inbound(self, message: discord.Message) -> InboundMessage:
        mention_token = f"<@{self.user.id}>" if self.user else None
        return InboundMessage(
            event_id=str(message.id),
            actor_id=str(message.author.id),
            actor_name=message.author.name,
            content=message.content,
            channel_id=str(message.channel.id),
            guild_id=str(message.guild.id) if message.guild else None,
            mentioned=self.user is not None and self.user in message.mentions,
            is_dm=isinstance(message.channel, discord.DMChannel),
            mention_token=mention_token,
        )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        try:
            await self._orchestrator.handle_message(
                self.to_inbound(message), MessageReply(message, self._command_prefix)
            )
        except Exception:
            logger.exception("Error handling message")

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.component or interaction.message is None:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        sentiment = parse_feedback_custom_id(custom_id)
        if sentiment is None:
            return

        event = FeedbackEvent(
            response_message_id=str(interaction.message.id),
            actor_id=str(interaction.user.id),
            sentiment=sentiment,
            channel_id=str(interaction.channel_id) if interaction.channel_id else None,
        )
        try:
            await self._orchestrator.handle_feedback(event, InteractionReply(interaction))
        except Exception:
            logger.exception("Error handling feedback interaction")
