"""Debounced, concurrency-bounded scheduling of accounting passes."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, Optional

from ..monitoring.metrics import QuotaMetrics
from ..monitoring.structured_logging import LoggingContext

logger = logging.getLogger(__name__)

# Pass phases
DEBOUNCING = "debouncing"
QUEUED = "queued"
RUNNING = "running"

PassRunner = Callable[[str, str], Awaitable[object]]


class PassGate:
    """Caps the number of accounting passes running at once.

    Admission waits on a semaphore instead of polling; no pass is dropped.
    """

    def __init__(self, max_concurrent: int = 5):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.in_flight = 0
        self.peak_in_flight = 0

    @asynccontextmanager
    async def slot(self):
        async with self._semaphore:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                yield
            finally:
                self.in_flight -= 1


class PassScheduler:
    """Schedules accounting passes for one tenant.

    ``notify_event`` debounces: the first event arms a pass that starts after
    ``debounce_seconds``; further events before it starts are coalesced into
    it. ``request_pass`` schedules an immediate pass. Every pass goes through
    the same gate.
    """

    def __init__(self, tenant: str, run_pass: PassRunner,
                 debounce_seconds: float = 3.0, max_concurrent: int = 5,
                 metrics: Optional[QuotaMetrics] = None):
        self.tenant = tenant
        self.run_pass = run_pass
        self.debounce_seconds = debounce_seconds
        self.gate = PassGate(max_concurrent)
        self.metrics = metrics
        self._phases: Dict[asyncio.Task, str] = {}
        self._armed: Optional[asyncio.Task] = None
        self._closed = False
        self.passes_started = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def phase_counts(self) -> Dict[str, int]:
        counts = {DEBOUNCING: 0, QUEUED: 0, RUNNING: 0}
        for phase in self._phases.values():
            counts[phase] += 1
        return counts

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task):
        self._phases.pop(task, None)
        if self._armed is task:
            self._armed = None

    def notify_event(self) -> bool:
        """Register a filesystem event; True when it armed a new pass."""
        if self._closed:
            return False
        if self._armed is not None and self._phases.get(self._armed) == DEBOUNCING:
            if self.metrics:
                self.metrics.events_total.labels(tenant=self.tenant, outcome="coalesced").inc()
            return False
        self._armed = self._spawn(self._debounced_pass())
        self._phases[self._armed] = DEBOUNCING
        if self.metrics:
            self.metrics.events_total.labels(tenant=self.tenant, outcome="scheduled").inc()
        return True

    def request_pass(self, trigger: str = "periodic") -> Optional[asyncio.Task]:
        """Schedule a pass without debounce."""
        if self._closed:
            return None
        task = self._spawn(self._gated_pass(trigger))
        self._phases[task] = QUEUED
        return task

    async def _debounced_pass(self):
        await asyncio.sleep(self.debounce_seconds)
        await self._gated_pass("event")

    async def _gated_pass(self, trigger: str):
        task = asyncio.current_task()
        self._phases[task] = QUEUED
        if self._armed is task:
            self._armed = None
        async with self.gate.slot():
            self._phases[task] = RUNNING
            self.passes_started += 1
            if self.metrics:
                self.metrics.passes_in_flight.labels(tenant=self.tenant).set(self.gate.in_flight)
            try:
                with LoggingContext(tenant_id=self.tenant, trigger=trigger):
                    await self.run_pass(self.tenant, trigger)
            except Exception as e:
                logger.error(f"Accounting pass for {self.tenant} raised: {e}", exc_info=True)
            finally:
                if self.metrics:
                    self.metrics.passes_in_flight.labels(tenant=self.tenant).set(self.gate.in_flight - 1)

    async def drain(self):
        """Stop accepting passes, cancel those not yet running, await the rest.

        A pass that has started is never cancelled, so an enforcement
        transition cannot be interrupted half-applied.
        """
        self._closed = True
        pending = [task for task, phase in self._phases.items() if phase != RUNNING]
        running = [task for task, phase in self._phases.items() if phase == RUNNING]
        for task in pending:
            task.cancel()
        if pending or running:
            logger.info(
                f"Draining {self.tenant}: cancelled {len(pending)} pending pass(es), "
                f"awaiting {len(running)} running"
            )
        await asyncio.gather(*pending, return_exceptions=True)
        await asyncio.gather(*running, return_exceptions=True)
