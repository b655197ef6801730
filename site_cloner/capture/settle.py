# site_cloner/capture/settle.py
"""
Settle detection: decide when a page has finished loading after navigation.

A load event is not enough for single-page apps, whose data fetches often
start after it fires. The detector waits until the network has been silent
for ``idle_threshold`` seconds, or gives up after ``max_wait``.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from site_cloner.config import SettleConfig

__all__ = ["NetworkActivityMonitor", "SettleDetector"]


class NetworkActivityMonitor:
    """Remembers when the last network response was seen."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last = clock()

    def mark(self) -> None:
        self._last = self._clock()

    def idle_for(self) -> float:
        return self._clock() - self._last


class SettleDetector:
    """Grace period, then poll until the network is idle or the hard limit passes."""

    def __init__(
        self,
        monitor: NetworkActivityMonitor,
        *,
        grace: float = 2.0,
        poll_interval: float = 0.5,
        idle_threshold: float = 2.5,
        max_wait: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.monitor = monitor
        self.grace = grace
        self.poll_interval = poll_interval
        self.idle_threshold = idle_threshold
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(cls, monitor: NetworkActivityMonitor, cfg: SettleConfig) -> SettleDetector:
        return cls(
            monitor,
            grace=cfg.grace,
            poll_interval=cfg.poll_interval,
            idle_threshold=cfg.idle_threshold,
            max_wait=cfg.max_wait,
        )

    async def wait(self) -> bool:
        """Return True when settled by silence, False when ``max_wait`` ran out."""
        await self._sleep(self.grace)
        start = self._clock()
        while True:
            if self.monitor.idle_for() >= self.idle_threshold:
                return True
            if self._clock() - start >= self.max_wait:
                return False
            await self._sleep(self.poll_interval)
