#!/usr/bin/env python3
"""
Enrichment orchestrator.

Turns candidate RawItems into EnrichedItems with a bounded number of concurrent
workers. Each worker runs extraction, then summarization, then classification for
one item. A failure inside any step degrades that item to its fallback text; it
never reaches the other workers or the batch.
"""

from asyncio import Semaphore, gather
from typing import List, Optional, Sequence

from aiohttp import ClientSession

from classifier import TrackClassifier, build_classifier
from config import config, get_logger
from extractor import ArticleExtractor
from models import CycleContext, EnrichedItem, FALLBACK_SUMMARY, RawItem, item_id_for_url
from summarizer import Summarizer
from telemetry import trace_span
from utils import truncate_string

logger = get_logger("enricher")


def compose_summary(ai_summary: str, extracted_text: str, snippet: str, fallback_chars: int) -> str:
    """Pick the summary field: AI summary, then truncated extracted text, then snippet, then a literal."""
    if ai_summary:
        return ai_summary
    if extracted_text:
        return truncate_string(extracted_text, fallback_chars)
    if snippet:
        return snippet
    return FALLBACK_SUMMARY


def compose_content(item: RawItem) -> str:
    published = item.published_at.isoformat() if item.published_at else ""
    return f"{item.source_name} • {published}"


class Enricher:
    def __init__(
        self,
        extractor: Optional[ArticleExtractor] = None,
        summarizer: Optional[Summarizer] = None,
        classifier: Optional[TrackClassifier] = None,
        concurrency: Optional[int] = None,
        fallback_chars: Optional[int] = None,
    ) -> None:
        self.extractor = extractor or ArticleExtractor()
        self.summarizer = summarizer or Summarizer()
        self.classifier = classifier or build_classifier()
        self.concurrency = max(1, concurrency or config.ENRICH_CONCURRENCY)
        self.fallback_chars = fallback_chars or config.SUMMARY_FALLBACK_CHARS

    @trace_span(
        "enrich_batch",
        tracer_name="enricher",
        attr_from_args=lambda self, candidates, context, session: {
            "enrich.candidates": len(candidates),
            "enrich.concurrency": self.concurrency,
        },
    )
    async def enrich(
        self, candidates: Sequence[RawItem], context: CycleContext, session: ClientSession
    ) -> List[EnrichedItem]:
        """Enrich all candidates with at most `concurrency` items in flight."""
        semaphore = Semaphore(self.concurrency)
        logger.info(f"Enriching {len(candidates)} items with concurrency {self.concurrency}; {self.summarizer.describe()}")

        async def worker(item: RawItem) -> EnrichedItem:
            async with semaphore:
                return await self.enrich_item(item, context, session)

        return list(await gather(*(worker(item) for item in candidates)))

    async def enrich_item(self, item: RawItem, context: CycleContext, session: ClientSession) -> EnrichedItem:
        """Enrich one item. Never raises; failures fall back to whatever text is available."""
        extracted = ""
        ai_summary = ""
        try:
            extracted = await self.extractor.extract(item.url, session, context)
        except Exception as e:  # summarization still runs on the snippet
            context.item_failures += 1
            logger.warning(f"Extraction failed for {item.url}; summarizing the snippet: {e}")
        try:
            ai_summary = await self.summarizer.summarize(item.title, item.url, extracted or item.snippet, context)
        except Exception as e:  # any collaborator failure degrades this item only
            context.item_failures += 1
            logger.warning(f"Summarization failed for {item.url}; using fallback text: {e}")

        track = self.classifier.classify(item.title, ai_summary or extracted or item.snippet)
        return EnrichedItem(
            id=item_id_for_url(item.url),
            title=item.title,
            track=track,
            summary=compose_summary(ai_summary, extracted, item.snippet, self.fallback_chars),
            content=compose_content(item),
            url=item.url,
            published_at=item.published_at,
        )

    def close(self) -> None:
        close = getattr(self.extractor, "close", None)
        if callable(close):
            close()
