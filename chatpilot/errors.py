"""
ChatPilot exceptions.

Skips (dormant conversation, paused AI, duplicate batch...) are not errors
and never raise. Everything here is either a hard failure surfaced to the
caller or a degraded condition caught inside the turn.
"""

from typing import List, Optional


class ChatPilotError(Exception):
    """Base class for all ChatPilot errors."""

    status_code: int = 500


class RequestValidationError(ChatPilotError):
    """Inbound request is missing required fields."""

    status_code = 400


class LLMInvocationError(ChatPilotError):
    """The vendor API failed on the primary text or multimodal call."""

    def __init__(self, message: str, model: Optional[str] = None):
        self.model = model
        super().__init__(message)


class NoResponseError(ChatPilotError):
    """Every invocation attempt came back empty."""

    def __init__(self, attempts: List[str], message: str = ""):
        self.attempts = attempts
        if not message:
            message = "No response generated after attempts: " + ", ".join(attempts)
        super().__init__(message)


class MediaFetchError(ChatPilotError):
    """A media asset could not be downloaded or decoded."""


class MediaTooLargeError(MediaFetchError):
    """A media asset exceeds the configured size ceiling."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Media too large: {size} bytes (max {limit})")


class VendorFileError(ChatPilotError):
    """Upload or analysis on the LLM vendor file store failed."""
