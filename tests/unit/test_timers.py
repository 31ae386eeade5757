from datetime import datetime, timedelta, timezone
import asyncio

import pytest

from agentflow.core.clock import FrozenClock
from agentflow.engine.timers import CronTimer, IntervalTimer


class FakeSleep:
    """Advances the clock instead of sleeping, stops after ``limit`` calls."""

    def __init__(self, clock=None, limit=3):
        self.clock = clock
        self.limit = limit
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if len(self.calls) >= self.limit:
            await asyncio.Event().wait()
        if self.clock is not None:
            self.clock.advance(seconds=seconds)


@pytest.mark.asyncio
async def test_cron_timer_sleeps_until_each_fire():
    clock = FrozenClock(datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc))
    sleep = FakeSleep(clock, limit=3)
    fired = []
    timer = CronTimer("0 9 * * *", "UTC", lambda: fired.append(clock.now()), clock=clock, sleep=sleep)

    timer.start()
    for _ in range(20):
        await asyncio.sleep(0)
    assert timer.running

    await timer.stop()
    assert not timer.running
    assert sleep.calls == [9 * 3600, 24 * 3600, 24 * 3600]
    assert fired == [
        datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc),
        datetime(2025, 1, 2, 9, 0, tzinfo=timezone.utc),
    ]


@pytest.mark.asyncio
async def test_cron_timer_survives_callback_errors():
    clock = FrozenClock(datetime(2025, 1, 1, 8, 59, tzinfo=timezone.utc))
    sleep = FakeSleep(clock, limit=3)
    calls = []

    def boom():
        calls.append(1)
        raise RuntimeError("boom")

    timer = CronTimer("0 9 * * *", "UTC", boom, clock=clock, sleep=sleep)
    timer.start()
    for _ in range(20):
        await asyncio.sleep(0)
    await timer.stop()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_interval_timer():
    sleep = FakeSleep(limit=4)
    ticks = []
    timer = IntervalTimer(60, lambda: ticks.append(1), sleep=sleep)
    timer.start()
    for _ in range(20):
        await asyncio.sleep(0)
    await timer.stop()
    assert sleep.calls == [60, 60, 60, 60]
    assert len(ticks) == 3


@pytest.mark.asyncio
async def test_stop_before_start_is_noop():
    timer = IntervalTimer(1, lambda: None)
    await timer.stop()
    assert not timer.running
