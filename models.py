#!/usr/bin/env python3
"""
Data model for the feed enrichment pipeline.

RawItem is transient (one refresh cycle), EnrichedItem is built once per surviving
candidate, and CacheSnapshot is the immutable result of a cycle exposed to readers.
CycleContext carries state scoped to a single cycle, most notably the summarizer
circuit breaker.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from hashlib import sha256
from typing import Any, Dict, Optional, Tuple

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_LEVEL = "Foundations"
DEFAULT_TYPE = "Article"
FALLBACK_SUMMARY = "New article"
UNTITLED = "(untitled)"


def recency_key(published_at: Optional[datetime]) -> Tuple[bool, datetime]:
    """Sort key for newest-first ordering; undated items rank below every dated one."""
    return (published_at is not None, published_at or EPOCH)


class Track(str, Enum):
    """Closed set of topical tracks. Values are the labels clients display."""

    AIOPS = "AI Ops"
    SFT_RL = "SFT/RL"
    EVALS = "Evals"
    EXPERIMENTS = "Experiments"

    @classmethod
    def default(cls) -> "Track":
        return cls.AIOPS

    @classmethod
    def from_label(cls, label: str) -> Optional["Track"]:
        """Resolve a track from its label or member name, case-insensitively."""
        wanted = (label or "").strip().lower()
        for track in cls:
            if wanted in (track.value.lower(), track.name.lower()):
                return track
        return None


def item_id_for_url(url: str) -> str:
    """Derive a stable item id from its url alone."""
    return sha256(url.strip().encode("utf-8")).hexdigest()[:24]


@dataclass(frozen=True)
class RawItem:
    title: str
    url: str
    source_name: str
    published_at: Optional[datetime] = None
    snippet: str = ""

    @property
    def sort_key(self) -> Tuple[bool, datetime]:
        return recency_key(self.published_at)


@dataclass(frozen=True)
class EnrichedItem:
    id: str
    title: str
    track: Track
    summary: str
    content: str
    url: str
    level: str = DEFAULT_LEVEL
    type: str = DEFAULT_TYPE
    published_at: Optional[datetime] = None

    @property
    def sort_key(self) -> Tuple[bool, datetime]:
        return recency_key(self.published_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "track": self.track.value,
            "level": self.level,
            "type": self.type,
            "summary": self.summary,
            "content": self.content,
            "url": self.url,
        }


@dataclass(frozen=True)
class CacheSnapshot:
    """One fully built generation of the cache. Never mutated after construction."""

    updated_at: Optional[datetime]
    items: Tuple[EnrichedItem, ...] = ()
    generation: int = 0

    @classmethod
    def empty(cls) -> "CacheSnapshot":
        return cls(updated_at=None, items=(), generation=0)

    def find(self, item_id: Optional[str]) -> Optional[EnrichedItem]:
        if not item_id:
            return None
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        updated_ms = int(self.updated_at.timestamp() * 1000) if self.updated_at else 0
        return {
            "updatedAt": updated_ms,
            "generation": self.generation,
            "resources": [item.to_dict() for item in self.items],
        }


@dataclass
class CycleContext:
    """State shared by the workers of a single refresh cycle.

    A new context is created at the start of every cycle, so the summarizer
    circuit breaker can never leak into the next one. Setting the breaker is a
    plain attribute write; two workers racing to set it is harmless.
    """

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    summaries_disabled: bool = False
    disabled_reason: str = ""
    ai_calls: int = 0
    ai_summaries: int = 0
    extractions: int = 0
    item_failures: int = 0

    def disable_summaries(self, reason: str) -> None:
        if not self.summaries_disabled:
            self.disabled_reason = reason
        self.summaries_disabled = True

    def stats(self) -> Dict[str, Any]:
        return {
            "ai_calls": self.ai_calls,
            "ai_summaries": self.ai_summaries,
            "extractions": self.extractions,
            "item_failures": self.item_failures,
            "summaries_disabled": self.summaries_disabled,
        }
