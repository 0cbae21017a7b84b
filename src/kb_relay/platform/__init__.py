"""Messaging platform adapters."""

from .base import FeedbackEvent, FeedbackReply, InboundMessage, Reply, Sentiment

__all__ = ["FeedbackEvent", "FeedbackReply", "InboundMessage", "Reply", "Sentiment"]
