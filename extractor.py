#!/usr/bin/env python3
"""
Readability extraction for article pages.

Fetches an article URL and reduces it to a bounded, whitespace-normalized plain
text excerpt. The reduction is a pluggable strategy (HTML -> text): readability's
main-content heuristic by default, with a plain document-text reduction as the
fallback. PDF responses are read with pypdf. Extraction is best-effort: every
failure yields an empty string.
"""

from asyncio import get_running_loop, wait_for, TimeoutError
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Optional, Protocol
import io

from aiohttp import ClientSession, ClientTimeout
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from readability import Document

from config import config, get_logger
from errors import ExtractionError
from models import CycleContext
from telemetry import trace_span
from utils import RateLimiter, html_to_text, normalize_whitespace, validate_url

logger = get_logger("extractor")

# Readability output shorter than this is treated as a failed heuristic
MIN_READABLE_CHARS = 200


class TextExtractionStrategy(Protocol):
    """Reduce an HTML document to plain text."""

    name: str

    def extract_text(self, html_content: str, url: str) -> str:
        ...


class PlainTextStrategy:
    """Whole-document text with scripts, styles and navigation chrome removed."""

    name = "plain"

    def extract_text(self, html_content: str, url: str) -> str:
        return html_to_text(html_content)


class ReadabilityStrategy:
    """Main-content heuristic from readability, falling back to the plain reduction."""

    name = "readability"

    def __init__(self, fallback: Optional[TextExtractionStrategy] = None) -> None:
        self.fallback = fallback or PlainTextStrategy()

    def extract_text(self, html_content: str, url: str) -> str:
        try:
            article_html = Document(html_content, url=url).summary(html_partial=True)
            text = html_to_text(article_html)
        except Exception as e:  # lxml raises assorted parser errors
            logger.debug(f"Readability failed for {url}: {e}")
            text = ""
        if len(text) >= MIN_READABLE_CHARS:
            return text
        return self.fallback.extract_text(html_content, url)


class ArticleExtractor:
    def __init__(
        self,
        strategy: Optional[TextExtractionStrategy] = None,
        timeout: Optional[float] = None,
        max_chars: Optional[int] = None,
        requests_per_minute: Optional[int] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.strategy = strategy or ReadabilityStrategy()
        self.timeout = timeout if timeout is not None else config.PAGE_TIMEOUT
        self.max_chars = max_chars or config.EXTRACT_MAX_CHARS
        self.user_agent = user_agent or config.USER_AGENT
        rpm = requests_per_minute if requests_per_minute is not None else config.PAGE_REQUESTS_PER_MINUTE
        self.rate_limiter = RateLimiter(rpm)
        self.executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="extract")

    @trace_span(
        "extract_article",
        tracer_name="extractor",
        attr_from_args=lambda self, url, session, context=None: {
            "entry.url": url,
        },
    )
    async def extract(self, url: str, session: ClientSession, context: Optional[CycleContext] = None) -> str:
        """Return bounded plain text for the article at `url`, or "" on any failure."""
        if not validate_url(url):
            return ""
        try:
            await self.rate_limiter.acquire()
            text = await wait_for(self._fetch_and_reduce(url, session), timeout=self.timeout)
        except TimeoutError:
            logger.info(f"Extraction timed out after {self.timeout:g}s for {url}")
            return ""
        except ExtractionError as e:
            logger.info(f"Extraction failed for {url}: {e}")
            return ""
        except Exception as e:  # extraction never fails the item
            logger.warning(f"Error extracting content from {url}: {e}")
            return ""

        text = normalize_whitespace(text)[:self.max_chars]
        if text and context is not None:
            context.extractions += 1
        return text

    async def _fetch_and_reduce(self, url: str, session: ClientSession) -> str:
        request_kwargs = {
            'headers': {'User-Agent': self.user_agent},
            'timeout': ClientTimeout(total=self.timeout),
        }
        async with session.get(url, **request_kwargs) as response:
            if response.status != 200:
                raise ExtractionError(f"HTTP {response.status}")
            content_type = (response.headers.get('Content-Type') or '').lower()
            if 'application/pdf' in content_type:
                pdf_data = await response.read()
                return await self.run_in_executor(self._pdf_to_text, pdf_data, url)
            if content_type and not any(t in content_type for t in ('html', 'xml', 'text/plain')):
                raise ExtractionError(f"unsupported content type {content_type}")
            html_content = await response.text(errors='replace')

        # Readability parsing is CPU-bound
        return await self.run_in_executor(self.strategy.extract_text, html_content, url)

    def _pdf_to_text(self, pdf_data: bytes, url: str) -> str:
        try:
            reader = PdfReader(io.BytesIO(pdf_data))
            parts = []
            total = 0
            for page in reader.pages:
                page_text = page.extract_text() or ""
                parts.append(page_text)
                total += len(page_text)
                if total >= self.max_chars:
                    break
            return "\n".join(parts)
        except (PdfReadError, ValueError, KeyError, TypeError) as e:
            raise ExtractionError(f"unreadable PDF: {e}") from e

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in the extractor's thread pool."""
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    def close(self) -> None:
        self.executor.shutdown(wait=False)
        logger.debug("ArticleExtractor closed")
