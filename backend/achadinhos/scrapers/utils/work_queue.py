"""Bounded-concurrency gate around strategy calls."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from achadinhos.config import settings


T = TypeVar("T")


class ScrapeQueue:
    """Process-wide ceiling on how many scrapes run at the same time.

    Every strategy call goes through ``run``; extra callers wait on the
    semaphore. ``active`` and ``peak`` are exposed for health checks and tests.
    """

    def __init__(self, concurrency: Optional[int] = None):
        self.concurrency = concurrency or settings.SCRAPER_CONCURRENCY
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self.active = 0
        self.peak = 0

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func()`` once a slot is free.

        Args:
            func: Zero-argument coroutine function

        Returns:
            Whatever ``func`` returns
        """
        async with self._semaphore:
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                return await func()
            finally:
                self.active -= 1
