#!/usr/bin/env python3
"""
Refresh Scheduler

Drives the aggregator on a fixed interval:

- Runs one refresh cycle immediately on startup
- Waits the refresh interval, measured from the end of the previous cycle
- Clamps the configured interval into a sane range instead of rejecting it
- Keeps running when a cycle fails, logging the error
- Reports status (interval, last and next run, snapshot generation)
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from aggregator import FeedAggregator
from config import REFRESH_MINUTES_MAX, REFRESH_MINUTES_MIN, config, get_logger
from telemetry import trace_span

# Module-specific logger
logger = get_logger("scheduler")


def clamp_interval_minutes(minutes: Any) -> int:
    """Clamp a refresh interval into [REFRESH_MINUTES_MIN, REFRESH_MINUTES_MAX].

    Non-numeric values fall back to the configured default.
    """
    try:
        value = int(minutes)
    except (TypeError, ValueError):
        logger.warning(f"Invalid refresh interval {minutes!r}; using {config.REFRESH_MINUTES} minutes")
        value = config.REFRESH_MINUTES
    clamped = min(max(value, REFRESH_MINUTES_MIN), REFRESH_MINUTES_MAX)
    if clamped != value:
        logger.warning(f"Refresh interval {value} minutes out of range; clamped to {clamped}")
    return clamped


class RefreshScheduler:
    """Periodic refresh loop around a FeedAggregator."""

    def __init__(self, aggregator: FeedAggregator, interval_minutes: Optional[int] = None):
        self.aggregator = aggregator
        self.interval_minutes = clamp_interval_minutes(
            config.REFRESH_MINUTES if interval_minutes is None else interval_minutes
        )
        self.last_run_at: Optional[datetime] = None
        self.next_run_at: Optional[datetime] = None
        self.cycles_completed = 0
        self.cycles_failed = 0

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0

    async def run_cycle(self) -> bool:
        """Run (or join) one refresh cycle. Returns False if it raised."""
        try:
            snapshot = await self.aggregator.refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.cycles_failed += 1
            logger.error(f"Scheduled refresh failed: {e}")
            return False
        finally:
            self.last_run_at = datetime.now(timezone.utc)
        self.cycles_completed += 1
        logger.info(f"Scheduled refresh published generation {snapshot.generation} with {len(snapshot.items)} items")
        return True

    @trace_span("scheduler.main_loop", tracer_name="scheduler")
    async def run_forever(self) -> None:
        """Boot cycle, then one cycle per interval until cancelled."""
        logger.info(f"Starting refresh scheduler (every {self.interval_minutes} minutes)")
        try:
            while True:
                await self.run_cycle()
                self.next_run_at = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
                logger.info(f"Sleeping {self.interval_minutes} minutes until next refresh at {self.next_run_at.isoformat()}")
                await self._sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled - shutting down")
            raise

    @trace_span(
        "scheduler.sleep",
        tracer_name="scheduler",
        attr_from_args=lambda self, seconds: {"sleep.seconds": float(seconds)},
    )
    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def get_schedule_status(self) -> Dict[str, Any]:
        """Current schedule status, suitable for JSON output."""
        snapshot = self.aggregator.cache.current()
        return {
            "current_time": datetime.now(timezone.utc).isoformat(),
            "interval_minutes": self.interval_minutes,
            "last_run_time": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_time": self.next_run_at.isoformat() if self.next_run_at else None,
            "refreshing": self.aggregator.refreshing,
            "cycles_completed": self.cycles_completed,
            "cycles_failed": self.cycles_failed,
            "generation": snapshot.generation,
            "items": len(snapshot.items),
            "last_cycle": self.aggregator.last_run,
        }

    def print_schedule_status(self) -> None:
        status = self.get_schedule_status()
        print("\nRefresh Scheduler Status")
        print(f"Current time: {status['current_time']}")
        print(f"Interval: {status['interval_minutes']} minutes")
        print(f"Last run: {status['last_run_time'] or 'never'}")
        print(f"Next run: {status['next_run_time'] or 'on startup'}")


def create_scheduler(aggregator: Optional[FeedAggregator] = None, interval_minutes: Optional[int] = None) -> RefreshScheduler:
    """Create a RefreshScheduler, building a default aggregator when none is given."""
    return RefreshScheduler(aggregator or FeedAggregator(), interval_minutes)
