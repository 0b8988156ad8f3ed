#!/usr/bin/env python3
"""
Feed aggregation and refresh cycle.

One refresh cycle fetches every source concurrently, merges the results, drops items
without a url, sorts newest-first, caps the candidate set, enriches it, and publishes
a new snapshot by swapping a single reference. A cycle always publishes, even when
every source failed, so `updated_at` keeps signalling freshness to readers.

Cycles are single-flight: a refresh requested while one is running joins it instead
of starting a second one, so at most one cycle executes and publishes at a time.
"""

from asyncio import Task, create_task, shield
from datetime import datetime, timezone
from time import monotonic
from typing import Any, Callable, Dict, Iterable, List, Optional

from aiohttp import ClientSession, TCPConnector

from cache import SnapshotCache, snapshot_cache
from config import config, get_logger
from enricher import Enricher
from errors import RefreshError
from fetcher import FeedFetcher, FeedFetchResult
from models import CacheSnapshot, CycleContext, EnrichedItem, RawItem
from telemetry import trace_span
from utils import format_duration

logger = get_logger("aggregator")


def _default_session() -> ClientSession:
    return ClientSession(connector=TCPConnector(limit=20, limit_per_host=4))


def merge_candidates(results: Iterable[FeedFetchResult]) -> List[RawItem]:
    """Merge per-source items, drop those without a url, and sort newest first.

    Items without a publication date sort after every dated item.
    """
    merged = [item for result in results for item in result.items if item.url]
    merged.sort(key=lambda item: item.sort_key, reverse=True)
    return merged


def sort_by_recency(items: Iterable[EnrichedItem]) -> List[EnrichedItem]:
    return sorted(items, key=lambda item: item.sort_key, reverse=True)


class FeedAggregator:
    def __init__(
        self,
        sources: Optional[Dict[str, str]] = None,
        fetcher: Optional[FeedFetcher] = None,
        enricher: Optional[Enricher] = None,
        cache: Optional[SnapshotCache] = None,
        max_items: Optional[int] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.sources = dict(sources if sources is not None else config.FEED_SOURCES)
        self.fetcher = fetcher or FeedFetcher()
        self.enricher = enricher or Enricher()
        self.cache = cache or snapshot_cache
        self.max_items = max_items or config.MAX_ITEMS
        self.session_factory = session_factory or _default_session
        self.last_run: Optional[Dict[str, Any]] = None
        self._inflight: Optional[Task] = None

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def refresh(self) -> CacheSnapshot:
        """Run a refresh cycle, or join the one already in flight, and return its snapshot.

        Raises RefreshError only if a cycle could not be started; the current snapshot
        is left untouched in that case.
        """
        if self.refreshing:
            logger.info("Refresh already in progress; joining it")
        else:
            cycle = self.refresh_cycle()
            try:
                self._inflight = create_task(cycle)
            except (RuntimeError, MemoryError) as e:
                cycle.close()
                raise RefreshError(f"Could not start refresh cycle: {e}") from e
        # Cancelling a waiting caller must not cancel the shared cycle
        return await shield(self._inflight)

    @trace_span("refresh_cycle", tracer_name="aggregator")
    async def refresh_cycle(self) -> CacheSnapshot:
        """Execute one cycle: fetch, merge, sort, cap, enrich, publish."""
        context = CycleContext()
        start = monotonic()
        results: List[FeedFetchResult] = []
        candidates: List[RawItem] = []
        items: List[EnrichedItem] = []
        logger.info(f"Starting refresh cycle over {len(self.sources)} sources")

        try:
            async with self.session_factory() as session:
                results = await self.fetcher.fetch_all_feeds(self.sources, session)
                candidates = self.select_candidates(results)
                items = await self.enricher.enrich(candidates, context, session)
        except Exception as e:  # the cycle degrades to whatever it gathered
            logger.error(f"Refresh cycle failed before completion; publishing {len(items)} items: {e}")

        snapshot = self.cache.publish(sort_by_recency(items)[:self.max_items])
        duration = monotonic() - start
        failed = [r.slug for r in results if not r.ok]
        self.last_run = {
            "started_at": context.started_at.isoformat(),
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "duration_seconds": round(duration, 2),
            "sources_ok": len(results) - len(failed),
            "sources_failed": failed,
            "candidates": len(candidates),
            "published": len(snapshot.items),
            "generation": snapshot.generation,
            **context.stats(),
        }
        logger.info(
            "Refresh cycle done in %s: sources ok=%d failed=%d, candidates=%d, published=%d, "
            "ai summaries=%d/%d calls, extractions=%d%s",
            format_duration(duration),
            self.last_run["sources_ok"],
            len(failed),
            len(candidates),
            len(snapshot.items),
            context.ai_summaries,
            context.ai_calls,
            context.extractions,
            ", summaries disabled (quota)" if context.summaries_disabled else "",
        )
        return snapshot

    def select_candidates(self, results: Iterable[FeedFetchResult]) -> List[RawItem]:
        """Merged, url-bearing items, newest first, capped at max_items."""
        merged = merge_candidates(results)
        if len(merged) > self.max_items:
            logger.info(f"Trimming {len(merged)} candidates to {self.max_items}")
        return merged[:self.max_items]

    def close(self) -> None:
        self.fetcher.close()
        self.enricher.close()
