#!/usr/bin/env python3
"""
Shared helpers for the fetcher, extractor and summarizer: request pacing, retry
backoff, HTML-to-text reduction and small string utilities.
"""

from asyncio import Lock, sleep
from time import monotonic
from typing import Optional
import re

from bs4 import BeautifulSoup

from config import get_logger

logger = get_logger("utils")

WHITESPACE_PATTERN = re.compile(r'\s+')
TAG_PATTERN = re.compile(r'<[^>]+>')
NON_CONTENT_TAGS = [
    "script", "style", "iframe", "form", "object", "embed", "noscript",
    "frame", "frameset", "applet", "meta", "base", "link", "svg",
    "nav", "header", "footer", "aside", "button",
]


class RateLimiter:
    """Spaces out page requests so no more than `requests_per_minute` start per minute.

    A limit of 0 (or less) disables pacing.
    """

    def __init__(self, requests_per_minute: int):
        self.requests_per_minute = requests_per_minute
        self.min_interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0
        self._next_slot = 0.0
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self.min_interval > 0

    async def acquire(self):
        if not self.enabled:
            return
        async with self._lock:
            wait_time = self._next_slot - monotonic()
            if wait_time > 0:
                logger.debug(f"Pacing page requests: waiting {wait_time:.2f}s")
                await sleep(wait_time)
            self._next_slot = monotonic() + self.min_interval


class RetryHelper:
    """Exponential backoff delays, capped at `max_delay`."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        """Sleep before retry number `attempt` (0-based)."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Backing off {delay:.2f}s before retry {attempt + 1}")
            await sleep(delay)


def validate_url(url: str) -> bool:
    """Whether `url` looks like an absolute http(s) URL."""
    if not isinstance(url, str):
        return False
    url = url.strip()
    return url.startswith(('http://', 'https://')) and '.' in url


def normalize_whitespace(text: Optional[str]) -> str:
    """Collapse all runs of whitespace into single spaces and trim."""
    if not text:
        return ""
    return WHITESPACE_PATTERN.sub(' ', text).strip()


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Cut `text` to `max_length` characters, the suffix included."""
    if not text or len(text) <= max_length:
        return text
    if len(suffix) >= max_length:
        return text[:max_length]
    return text[:max_length - len(suffix)] + suffix


def html_to_text(html_content: Optional[str]) -> str:
    """Reduce an HTML fragment or document to whitespace-normalized plain text.

    Non-content elements (scripts, styles, navigation chrome, forms) are dropped first.
    Plain text input passes through with whitespace normalized.
    """
    if not html_content:
        return ""
    if '<' not in html_content:
        return normalize_whitespace(html_content)
    try:
        soup = BeautifulSoup(html_content, 'html.parser')
        for tag in soup(NON_CONTENT_TAGS):
            tag.decompose()
        return normalize_whitespace(soup.get_text(separator=' '))
    except (ValueError, TypeError, AssertionError) as e:
        logger.debug(f"HTML reduction failed, stripping tags with a regex: {e}")
        return normalize_whitespace(TAG_PATTERN.sub(' ', html_content))


def format_duration(seconds: float) -> str:
    """Human-readable duration, e.g. "1h 2m 5s"."""
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    parts = [f"{value}{unit}" for value, unit in ((hours, "h"), (minutes, "m")) if value]
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def mask_secret(value: Optional[str], show: int = 4) -> str:
    """Mask a secret for logging, keeping only its first and last few characters."""
    if not value:
        return "<missing>"
    v = str(value)
    if len(v) <= show * 2:
        return "*" * len(v)
    return f"{v[:show]}***{v[-show:]}"
