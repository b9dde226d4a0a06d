"""Periodic fallback accounting, independent of filesystem events."""

import asyncio
import logging

from .scheduler import PassScheduler

logger = logging.getLogger(__name__)


class FallbackScanner:
    """Requests an unconditional pass every ``interval`` seconds."""

    def __init__(self, scheduler: PassScheduler, interval: float = 300.0):
        self.scheduler = scheduler
        self.interval = interval
        self._stop = asyncio.Event()
        self.scans = 0

    async def run(self):
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                logger.debug(f"Periodic fallback check for {self.scheduler.tenant}")
                self.scans += 1
                self.scheduler.request_pass("periodic")

    def stop(self):
        self._stop.set()
