"""Knowledge-base backend API."""

from .client import BackendError, ChatBackendClient, ChatResponse, format_sources

__all__ = ["BackendError", "ChatBackendClient", "ChatResponse", "format_sources"]
