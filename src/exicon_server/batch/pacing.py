"""
Batch Pacing

A fixed-interval ticker that keeps external API usage under a rate
limit. The orchestrator calls ``wait()`` before each unit of work; the
pacer decides how long to hold it back.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional


class IntervalPacer:
    """
    Guarantees at least ``interval`` seconds between consecutive ticks.

    The first ``wait()`` returns immediately. Work that already took
    longer than the interval is not delayed further.

    Parameters
    ----------
    interval : float
        Minimum spacing between ticks in seconds; ``0`` disables pacing.
    clock : Callable[[], float]
        Monotonic time source.
    sleep : Callable[[float], Awaitable[None]]
        Coroutine used to wait; injectable for tests.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last_tick: Optional[float] = None

    async def wait(self) -> float:
        """Wait for the next tick. Returns the seconds actually slept."""
        slept = 0.0
        if self._last_tick is not None and self.interval > 0:
            remaining = self._last_tick + self.interval - self._clock()
            if remaining > 0:
                await self._sleep(remaining)
                slept = remaining
        self._last_tick = self._clock()
        return slept

    def reset(self) -> None:
        self._last_tick = None
