from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional
import asyncio
import math

from agentflow.config import settings


@dataclass
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: Optional[int] = None  # seconds until the oldest call leaves the window


class SlidingWindowRateLimiter:
    """In-memory per-key sliding window (single-process only).

    Timestamps older than the window are pruned lazily on every check.
    """

    def __init__(self, limit: int = settings.WEBHOOK_RATE_LIMIT, window_seconds: int = settings.WEBHOOK_RATE_WINDOW_SECONDS):
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self._calls: Dict[str, Deque[datetime]] = {}
        self._lock = asyncio.Lock()

    def _prune_locked(self, key: str, now: datetime) -> Deque[datetime]:
        calls = self._calls.setdefault(key, deque())
        cutoff = now - self.window
        while calls and calls[0] <= cutoff:
            calls.popleft()
        return calls

    async def hit(self, key: str, now: datetime) -> RateDecision:
        """Admit and record one call for ``key`` unless the window is full."""
        async with self._lock:
            calls = self._prune_locked(key, now)
            if len(calls) >= self.limit:
                retry_after = math.ceil((calls[0] + self.window - now).total_seconds())
                return RateDecision(allowed=False, remaining=0, retry_after=max(retry_after, 1))
            calls.append(now)
            return RateDecision(allowed=True, remaining=self.limit - len(calls))
