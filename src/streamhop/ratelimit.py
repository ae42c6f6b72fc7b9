"""
Per-resolution request spacing. Each ResolutionContext owns its own limiter;
there is no process-wide "last request" clock.
"""
from __future__ import annotations
import asyncio
import time


class RateLimiter:
    def __init__(self, min_interval: float = 0.0):
        self.min_interval = max(0.0, min_interval)
        self._lock = asyncio.Lock()
        self._last: float | None = None

    async def wait(self) -> None:
        if self.min_interval <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            if self._last is not None:
                delay = self._last + self.min_interval - now
                if delay > 0:
                    await asyncio.sleep(delay)
            self._last = time.monotonic()
