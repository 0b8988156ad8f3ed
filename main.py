#!/usr/bin/env python3
"""
Feed Enricher entry point.

Modes:
  serve   run a refresh on boot, keep refreshing on the configured interval, and serve the HTTP API
  run     run one full refresh cycle and print the resulting snapshot as JSON
  fetch   fetch, merge, sort and cap feed items without enrichment and print them
  status  print the effective configuration and schedule summary
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from aiohttp import web

from aggregator import FeedAggregator
from api import create_app
from config import config, get_logger
from scheduler import create_scheduler
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("main")


@trace_span("serve", tracer_name="main")
async def serve(host: str, port: int, interval_minutes: Optional[int] = None) -> None:
    """Serve the API while the scheduler refreshes the cache in the background."""
    aggregator = FeedAggregator()
    scheduler = create_scheduler(aggregator, interval_minutes)
    runner = web.AppRunner(create_app(aggregator, scheduler))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Server listening on {host}:{port}")

    loop_task = asyncio.create_task(scheduler.run_forever())
    try:
        await loop_task
    finally:
        loop_task.cancel()
        await runner.cleanup()
        aggregator.close()


async def run_once() -> dict:
    aggregator = FeedAggregator()
    try:
        snapshot = await aggregator.refresh()
    finally:
        aggregator.close()
    return {**snapshot.to_dict(), "cycle": aggregator.last_run}


async def fetch_only() -> list:
    aggregator = FeedAggregator()
    try:
        async with aggregator.session_factory() as session:
            results = await aggregator.fetcher.fetch_all_feeds(aggregator.sources, session)
    finally:
        aggregator.close()
    for result in results:
        if not result.ok:
            logger.warning(f"Source {result.slug} failed: {result.error}")
    return [
        {
            "title": item.title,
            "url": item.url,
            "source": item.source_name,
            "published": item.published_at.isoformat() if item.published_at else None,
        }
        for item in aggregator.select_candidates(results)
    ]


def print_status(interval_minutes: Optional[int] = None) -> None:
    scheduler = create_scheduler(FeedAggregator(), interval_minutes)
    print("\nFeed Enricher Status")
    for key, value in config.get_config_summary().items():
        print(f"   {key}: {value}")
    print("\nFeed sources:")
    for slug, url in config.FEED_SOURCES.items():
        print(f"   {slug}: {url}")
    scheduler.print_schedule_status()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Feed Enricher")
    parser.add_argument("mode", choices=["serve", "run", "fetch", "status"], nargs="?", default="serve",
                        help="Operation mode (default: serve)")
    parser.add_argument("--host", type=str, default=config.HOST, help="Address to bind the HTTP server to")
    parser.add_argument("--port", type=int, default=config.PORT, help="Port for the HTTP server")
    parser.add_argument("--interval", type=int, default=None,
                        help="Refresh interval in minutes (clamped to 5-1440)")
    args = parser.parse_args()

    init_telemetry("feed-enricher")
    try:
        if args.mode == "serve":
            asyncio.run(serve(args.host, args.port, args.interval))
        elif args.mode == "run":
            print(json.dumps(asyncio.run(run_once()), indent=2, ensure_ascii=False))
        elif args.mode == "fetch":
            print(json.dumps(asyncio.run(fetch_only()), indent=2, ensure_ascii=False))
        elif args.mode == "status":
            print_status(args.interval)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
