import asyncio

import pytest

from cache import SnapshotCache
from config import REFRESH_MINUTES_MAX, REFRESH_MINUTES_MIN, config
from scheduler import RefreshScheduler, clamp_interval_minutes


class CountingAggregator:
    def __init__(self, failures=0):
        self.cache = SnapshotCache()
        self.failures = failures
        self.calls = 0
        self.refreshing = False
        self.last_run = None

    async def refresh(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("cycle exploded")
        return self.cache.publish([])


@pytest.mark.parametrize(
    "configured,effective",
    [
        (1, REFRESH_MINUTES_MIN),
        (0, REFRESH_MINUTES_MIN),
        (-30, REFRESH_MINUTES_MIN),
        (5, 5),
        (60, 60),
        (1440, 1440),
        (100000, REFRESH_MINUTES_MAX),
        ("15", 15),
    ],
)
def test_interval_is_clamped(configured, effective):
    assert clamp_interval_minutes(configured) == effective


def test_invalid_interval_uses_configured_default():
    expected = min(max(config.REFRESH_MINUTES, REFRESH_MINUTES_MIN), REFRESH_MINUTES_MAX)
    assert clamp_interval_minutes("soon") == expected
    assert clamp_interval_minutes(None) == expected


def test_one_minute_interval_runs_every_five_minutes():
    scheduler = RefreshScheduler(CountingAggregator(), interval_minutes=1)
    assert scheduler.interval_minutes == 5
    assert scheduler.interval_seconds == 300


@pytest.mark.asyncio
async def test_loop_runs_on_boot_and_survives_failed_cycles():
    aggregator = CountingAggregator(failures=1)
    scheduler = RefreshScheduler(aggregator, interval_minutes=5)
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) >= 2:
            raise asyncio.CancelledError()

    scheduler._sleep = fake_sleep
    with pytest.raises(asyncio.CancelledError):
        await scheduler.run_forever()

    # Boot cycle runs before the first sleep, then one cycle per interval
    assert aggregator.calls == 2
    assert sleeps == [300.0, 300.0]
    assert scheduler.cycles_failed == 1
    assert scheduler.cycles_completed == 1


@pytest.mark.asyncio
async def test_schedule_status_reports_last_and_next_run():
    aggregator = CountingAggregator()
    scheduler = RefreshScheduler(aggregator, interval_minutes=10)

    status = scheduler.get_schedule_status()
    assert status["last_run_time"] is None
    assert status["generation"] == 0

    assert await scheduler.run_cycle() is True
    status = scheduler.get_schedule_status()
    assert status["interval_minutes"] == 10
    assert status["last_run_time"] is not None
    assert status["generation"] == 1
    assert status["cycles_completed"] == 1
