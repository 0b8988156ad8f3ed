#!/usr/bin/env python3
"""Process-wide holder of the most recent CacheSnapshot.

The aggregator is the only writer. Publishing swaps a single reference to a fully
built, frozen snapshot, so readers holding the previous generation keep a complete
view and never observe a partially built list.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from config import get_logger
from models import CacheSnapshot, EnrichedItem

logger = get_logger("cache")


class SnapshotCache:
    def __init__(self) -> None:
        self._snapshot = CacheSnapshot.empty()

    def current(self) -> CacheSnapshot:
        """Return an immutable handle to the current generation."""
        return self._snapshot

    def publish(self, items: Iterable[EnrichedItem], updated_at: Optional[datetime] = None) -> CacheSnapshot:
        """Build the next generation and swap it in."""
        previous = self._snapshot
        snapshot = CacheSnapshot(
            updated_at=updated_at or datetime.now(timezone.utc),
            items=tuple(items),
            generation=previous.generation + 1,
        )
        self._snapshot = snapshot
        logger.info(
            "Published snapshot generation %d with %d items (previous had %d)",
            snapshot.generation,
            len(snapshot.items),
            len(previous.items),
        )
        return snapshot


# Shared instance read by the HTTP layer
snapshot_cache = SnapshotCache()
