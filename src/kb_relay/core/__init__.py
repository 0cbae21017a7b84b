"""Core bot state: dedup, feedback correlation and side-effect plumbing."""

from .background import BackgroundDispatcher
from .clock import Clock, wall_clock_ms
from .dedup import DedupGuard, event_key
from .feedback import FeedbackCorrelator, FeedbackRecord
from .keepalive import TypingKeepalive
from .logging import SessionStats, log_timing

__all__ = [
    "BackgroundDispatcher",
    "Clock",
    "DedupGuard",
    "FeedbackCorrelator",
    "FeedbackRecord",
    "SessionStats",
    "TypingKeepalive",
    "event_key",
    "log_timing",
    "wall_clock_ms",
]
