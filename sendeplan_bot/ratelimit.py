from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass


@dataclass
class SpacingState:
    next_allowed_monotonic: float = 0.0
    acquired: int = 0


class MinIntervalLimiter:
    """Spaces consecutive requests by a fixed delay.

    The first acquire passes immediately; every later one waits until
    ``min_interval_seconds`` have elapsed since the previous acquire.
    """

    def __init__(self, min_interval_seconds: float) -> None:
        self._min_interval = max(0.0, float(min_interval_seconds))
        self._lock = asyncio.Lock()
        self._state = SpacingState()

    @property
    def acquired(self) -> int:
        return self._state.acquired

    def next_allowed_in_seconds(self) -> float:
        return max(0.0, self._state.next_allowed_monotonic - time.monotonic())

    async def acquire(self) -> None:
        async with self._lock:
            wait_s = self._state.next_allowed_monotonic - time.monotonic()
            if wait_s > 0:
                await asyncio.sleep(wait_s)
            self._state.next_allowed_monotonic = time.monotonic() + self._min_interval
            self._state.acquired += 1
