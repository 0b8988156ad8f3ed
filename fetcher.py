#!/usr/bin/env python3
"""
Feed fetcher and entry normalizer.

This module fetches syndication feeds (RSS, Atom and API-style search feeds that
return Atom) concurrently, one independent task per source, and maps their entries
into RawItem records. A failing source is logged and contributes zero items; it
never aborts its siblings.
"""

from asyncio import get_running_loop, gather, wait_for, TimeoutError
from aiohttp import ClientSession, ClientError, ClientTimeout
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import feedparser
from feedparser.datetimes import _parse_date as feedparser_parse_date

from config import config, get_logger
from errors import FeedSourceError
from models import RawItem, UNTITLED
from telemetry import init_telemetry, trace_span
from utils import RetryHelper, html_to_text, normalize_whitespace, truncate_string, validate_url

logger = get_logger("fetcher")
init_telemetry("feed-enricher")

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.9, */*;q=0.5"
MAX_REDIRECTS = 5

# Entry fields holding publication dates, ISO-style first
PARSED_DATE_FIELDS = ("published_parsed", "updated_parsed", "created_parsed")
RAW_DATE_FIELDS = ("isoDate", "published", "updated", "pubDate", "pubdate", "date", "created", "issued")


@dataclass
class FeedFetchResult:
    """Outcome of fetching one source: its items, or the reason it contributed none."""

    slug: str
    url: str
    items: List[RawItem] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FeedFetcher:
    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        user_agent: Optional[str] = None,
        snippet_max_chars: Optional[int] = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else config.FEED_TIMEOUT
        self.max_retries = max_retries if max_retries is not None else config.FEED_MAX_RETRIES
        self.user_agent = user_agent or config.USER_AGENT
        self.snippet_max_chars = snippet_max_chars or config.SNIPPET_MAX_CHARS
        self.retry_helper = RetryHelper(max_retries=self.max_retries, base_delay=config.RETRY_DELAY_BASE)
        self.executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="feedparse")

    async def fetch_all_feeds(self, sources: Dict[str, str], session: ClientSession) -> List[FeedFetchResult]:
        """Fetch every configured source concurrently and wait for all of them to finish or fail."""
        logger.info(f"Fetching {len(sources)} feed sources")
        results = await gather(*(self.fetch_feed(slug, url, session) for slug, url in sources.items()))
        failed = [r.slug for r in results if not r.ok]
        total = sum(len(r.items) for r in results)
        logger.info(
            "Fetched %d items from %d/%d sources%s",
            total,
            len(results) - len(failed),
            len(results),
            f" (failed: {', '.join(failed)})" if failed else "",
        )
        return list(results)

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, slug, url, session: {
            "feed.slug": slug,
            "feed.url": url,
        },
    )
    async def fetch_feed(self, slug: str, url: str, session: ClientSession) -> FeedFetchResult:
        """Fetch and parse one source within the feed time limit. Never raises."""
        try:
            items = await wait_for(self.fetch_source(slug, url, session), timeout=self.timeout)
            logger.info(f"Feed {slug}: {len(items)} entries")
            return FeedFetchResult(slug=slug, url=url, items=items)
        except TimeoutError:
            reason = f"timed out after {self.timeout:g}s"
        except FeedSourceError as e:
            reason = e.reason
        except Exception as e:  # one bad source never aborts its siblings
            reason = f"unexpected error: {e.__class__.__name__}: {e}"
        logger.warning(f"Feed {slug} unavailable ({url}): {reason}")
        return FeedFetchResult(slug=slug, url=url, error=reason)

    async def fetch_source(self, slug: str, url: str, session: ClientSession) -> List[RawItem]:
        """Fetch and parse one source, raising FeedSourceError on failure."""
        content = await self._fetch_feed_content(slug, url, session)
        feed = await self.run_in_executor(feedparser.parse, content)

        entries = feed.get('entries') or []
        if feed.get('bozo') and not entries:
            raise FeedSourceError(slug, f"malformed feed document: {feed.get('bozo_exception')}")
        if feed.get('bozo'):
            logger.debug(f"Feed parsing warning for {slug}: {feed.get('bozo_exception')}")

        feed_meta = feed.get('feed') or {}
        source_name = normalize_whitespace(feed_meta.get('title')) or url
        return [self.entry_to_raw_item(entry, source_name) for entry in entries]

    async def _fetch_feed_content(self, slug: str, url: str, session: ClientSession) -> bytes:
        """Fetch the raw feed document, retrying transient transport errors."""
        headers = {'User-Agent': self.user_agent, 'Accept': FEED_ACCEPT}
        for attempt in range(self.max_retries + 1):
            try:
                async with session.get(
                    url,
                    headers=headers,
                    timeout=ClientTimeout(total=self.timeout),
                    max_redirects=MAX_REDIRECTS,
                ) as response:
                    if not 200 <= response.status < 300:
                        raise FeedSourceError(slug, f"HTTP {response.status}")
                    return await response.read()
            except ClientError as e:
                detail = self._format_client_error(e)
                if attempt < self.max_retries:
                    logger.warning("Retry %d/%d for %s due to error: %s", attempt + 1, self.max_retries, slug, detail)
                    await self.retry_helper.sleep_for_attempt(attempt)
                    continue
                raise FeedSourceError(slug, f"network error: {detail}") from e
        raise FeedSourceError(slug, "no attempts made")

    def entry_to_raw_item(self, entry: Any, source_name: str) -> RawItem:
        """Map one parsed feed entry to a RawItem."""
        title, url = self._normalize_entry_identity(
            html_to_text(self._get_entry_value(entry, 'title')),
            self.resolve_entry_url(entry),
        )
        return RawItem(
            title=title,
            url=url,
            source_name=source_name,
            published_at=self.parse_published(entry),
            snippet=self.extract_snippet(entry),
        )

    def resolve_entry_url(self, entry: Any) -> str:
        """Canonical link, then an alternate link, then a URL-shaped guid; empty if none."""
        link = self._get_entry_value(entry, 'link')
        if isinstance(link, str) and link.strip():
            return link.strip()
        for alt in self._get_entry_value(entry, 'links') or []:
            href = alt.get('href') if isinstance(alt, dict) else None
            if href and alt.get('rel', 'alternate') == 'alternate':
                return href.strip()
        guid = self._get_entry_value(entry, 'id') or self._get_entry_value(entry, 'guid')
        if isinstance(guid, str) and validate_url(guid):
            return guid.strip()
        return ""

    def extract_snippet(self, entry: Any) -> str:
        """First non-empty of summary, description and full content, as trimmed plain text."""
        candidates: List[Optional[str]] = [
            self._get_entry_value(entry, 'summary'),
            self._get_entry_value(entry, 'description'),
        ]
        for content_item in self._get_entry_value(entry, 'content') or []:
            if isinstance(content_item, dict):
                candidates.append(content_item.get('value'))
        for candidate in candidates:
            text = html_to_text(candidate) if isinstance(candidate, str) else ""
            if text:
                return truncate_string(text, self.snippet_max_chars)
        return ""

    def parse_published(self, entry: Any) -> Optional[datetime]:
        """Parse the publication date from whichever field is present; None if unparseable."""
        for field_name in PARSED_DATE_FIELDS:
            value = self._date_value_to_datetime(self._get_entry_value(entry, field_name))
            if value:
                return value
        for field_name in RAW_DATE_FIELDS:
            value = self._date_value_to_datetime(self._get_entry_value(entry, field_name))
            if value:
                return value
        return None

    def _get_entry_value(self, entry: Any, field_name: str) -> Any:
        """Safely fetch feedparser entry fields with attribute or dict access."""
        if not field_name or entry is None:
            return None
        getter = getattr(entry, 'get', None)
        if callable(getter):
            try:
                value = getter(field_name)
            except (KeyError, AttributeError):
                value = None
            if value is not None:
                return value
        return getattr(entry, field_name, None)

    def _date_value_to_datetime(self, value: Any) -> Optional[datetime]:
        """Convert assorted date representations into an aware UTC datetime."""
        if value in (None, ''):
            return None

        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            try:
                return value.astimezone(timezone.utc)
            except (OverflowError, ValueError):
                # offsets can push year 1 or 9999 out of range
                return None

        if isinstance(value, (tuple, list)) or hasattr(value, 'tm_year'):
            # feedparser's *_parsed values are time.struct_time in UTC
            try:
                return datetime(*tuple(value)[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                return None

        if isinstance(value, str):
            return self._parse_date_string(value.strip())

        return None

    def _parse_date_string(self, date_str: str) -> Optional[datetime]:
        parsers = (
            self._parse_iso,
            self._parse_with_email_utils,
            self._parse_with_feedparser,
            self._parse_with_custom_formats,
        )
        for parser in parsers:
            parsed = parser(date_str)
            if parsed is not None:
                return parsed
        return None

    def _parse_iso(self, date_str: str) -> Optional[datetime]:
        try:
            dt = datetime.fromisoformat(date_str.replace('Z', '+00:00'))
        except (ValueError, OverflowError):
            return None
        return self._date_value_to_datetime(dt)

    def _parse_with_email_utils(self, date_str: str) -> Optional[datetime]:
        try:
            dt = parsedate_to_datetime(date_str)
        except (TypeError, ValueError, OverflowError, IndexError):
            return None
        return self._date_value_to_datetime(dt) if dt else None

    def _parse_with_feedparser(self, date_str: str) -> Optional[datetime]:
        try:
            time_struct = feedparser_parse_date(date_str)
        except (ValueError, TypeError, OverflowError):
            return None
        return self._date_value_to_datetime(time_struct) if time_struct else None

    def _parse_with_custom_formats(self, date_str: str) -> Optional[datetime]:
        custom_formats = [
            "%d %b %Y %H:%M:%S %z",
            "%d %b %Y %H:%M:%S %Z",
            "%d %b %Y %H:%M:%S",
            "%Y-%m-%d",
        ]
        for fmt in custom_formats:
            try:
                return self._date_value_to_datetime(datetime.strptime(date_str, fmt))
            except (ValueError, TypeError):
                continue
        return None

    def _normalize_entry_identity(self, title: Optional[str], url: Optional[str]) -> Tuple[str, str]:
        """Trim title and url, applying the untitled placeholder and length caps."""
        norm_title = (title or "").strip() or UNTITLED
        norm_title = norm_title[:255]
        norm_url = (url or "").strip()[:2048]
        return norm_title, norm_url

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        status = getattr(error, 'status', None)
        if status is not None:
            parts.append(f"status={status}")
        os_error = getattr(error, 'os_error', None)
        if os_error is not None and getattr(os_error, 'errno', None) is not None:
            parts.append(f"errno={os_error.errno}")
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in the fetcher's thread pool."""
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    def close(self) -> None:
        """Release the parser thread pool without waiting on abandoned parses."""
        self.executor.shutdown(wait=False)
        logger.debug("FeedFetcher closed")
