#!/usr/bin/env python3
"""Common error types shared across modules.

Each stage raises its own error internally and converts it into a fallback value at
its boundary, so none of these escape a refresh cycle except `RefreshError`.
"""

from typing import Dict, Any, Optional


class FeedSourceError(Exception):
    """A feed source could not be fetched or parsed (timeout, HTTP status, malformed document)."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class ExtractionError(Exception):
    """A page could not be fetched or reduced to readable text."""


class SummarizationError(Exception):
    """The AI service failed to produce a summary (transient or API error)."""


class QuotaExhaustedError(SummarizationError):
    """The AI service reported that the account quota is exhausted.

    Attributes:
        details: Provider error payload for diagnostics.
    """

    def __init__(self, message: str = "AI service quota exhausted", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ContentFilterError(SummarizationError):
    """Raised when provider content filtering blocks a response.

    Attributes:
        details: Optional provider-specific payload for diagnostics.
    """

    def __init__(self, message: str = "Content filtered by provider", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class RefreshError(Exception):
    """An on-demand refresh could not even begin. The previous snapshot is left untouched."""


__all__ = [
    "FeedSourceError",
    "ExtractionError",
    "SummarizationError",
    "QuotaExhaustedError",
    "ContentFilterError",
    "RefreshError",
]
