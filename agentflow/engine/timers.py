from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable, Optional
import asyncio
import contextlib

from agentflow.core.clock import Clock
from agentflow.core.logging import get_logger, log_fields
from agentflow.engine.cron import next_fire_time

logger = get_logger("timers")

TimerCallback = Callable[[], None]
Sleep = Callable[[float], Awaitable[None]]


class Timer(ABC):
    """Cancellable timer capability. The registry only ever sees start/stop."""

    def __init__(self, callback: TimerCallback, sleep: Sleep = asyncio.sleep):
        self._callback = callback
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the timer and wait until its loop has exited."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @abstractmethod
    async def _run(self) -> None:
        pass


class CronTimer(Timer):
    def __init__(
        self,
        expression: str,
        tz: str,
        callback: TimerCallback,
        clock: Optional[Clock] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        super().__init__(callback, sleep)
        self.expression = expression
        self.tz = tz
        self._clock = clock or Clock()
        self._last_fire: Optional[datetime] = None

    async def _run(self) -> None:
        while True:
            now = self._clock.now()
            # Never re-compute from before the last fire, sleep can wake early
            start = max(now, self._last_fire) if self._last_fire else now
            fire_at = next_fire_time(self.expression, self.tz, start)
            await self._sleep(max((fire_at - now).total_seconds(), 0.0))
            self._last_fire = fire_at
            try:
                self._callback()
            except Exception:
                logger.exception("Cron timer callback failed", extra=log_fields(expression=self.expression))


class IntervalTimer(Timer):
    def __init__(self, interval: float, callback: TimerCallback, sleep: Sleep = asyncio.sleep):
        super().__init__(callback, sleep)
        self.interval = interval

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            try:
                self._callback()
            except Exception:
                logger.exception("Interval timer callback failed")
