"""Per-tenant real-time quota daemon."""

import asyncio
import logging
import signal
from typing import Optional

from ..config import ServerConfig
from ..exceptions import EnforcementIOError
from ..models import validate_tenant_name
from ..monitoring.metrics import QuotaMetrics
from ..quota.manager import QuotaManager
from .scanner import FallbackScanner
from .scheduler import PassScheduler
from .watcher import EventSource, TenantWatcher, create_event_source

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class TenantQuotaMonitor:
    """Watches one tenant and keeps its quota state current.

    Startup: reconcile enforcement, run an initial pass, then start the event
    watcher and the fallback scanner. Shutdown (signal or ``request_stop``):
    stop both loops, cancel passes still debouncing or queued, await passes
    already running, then run one final pass.
    """

    def __init__(self, config: ServerConfig, tenant: str, manager: QuotaManager,
                 source: Optional[EventSource] = None,
                 metrics: Optional[QuotaMetrics] = None):
        self.config = config
        self.tenant = validate_tenant_name(tenant)
        self.manager = manager
        self.metrics = metrics
        self.scheduler = PassScheduler(
            tenant,
            manager.run_pass,
            debounce_seconds=config.monitor.debounce_seconds,
            max_concurrent=config.monitor.max_concurrent_passes,
            metrics=metrics,
        )
        self.scanner = FallbackScanner(self.scheduler, config.monitor.fallback_interval)
        self._source = source
        self.watcher: Optional[TenantWatcher] = None
        self._tasks = []
        self._stop_event = asyncio.Event()
        self._signals_installed = []

    def _create_source(self) -> EventSource:
        paths = self.config.paths
        return create_event_source(
            self.config.monitor.watch_backend,
            [paths.uploads_path(self.tenant), paths.published_path(self.tenant)],
            self.config.monitor.excluded_dirs,
        )

    def request_stop(self, signum: Optional[int] = None):
        if signum is not None:
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        self._stop_event.set()

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_stop, sig)
                self._signals_installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install handler for {sig.name}")

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed = []

    def _on_loop_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{task.get_name()} for {self.tenant} failed: {error}")

    async def start(self):
        """Startup checks and initial pass; raises on fatal startup errors."""
        source = self._source or self._create_source()
        self.watcher = TenantWatcher(source, self.scheduler)

        logger.info(f"Starting real-time quota monitoring for {self.tenant}")
        thresholds = self.config.thresholds
        logger.info(f"Thresholds: {thresholds.warning}%, {thresholds.critical}%, {thresholds.over}%")

        try:
            state = await self.manager.reconcile(self.tenant)
            logger.info(f"Enforcement state for {self.tenant}: {state.value}")
        except EnforcementIOError as e:
            logger.error(f"Could not reconcile enforcement state: {e}")

        logger.info("Performing initial quota check")
        await self.manager.run_pass(self.tenant, "startup")

        for name, coro in (("watcher", self.watcher.run()), ("fallback-scanner", self.scanner.run())):
            task = asyncio.create_task(coro, name=name)
            task.add_done_callback(self._on_loop_done)
            self._tasks.append(task)

    async def shutdown(self):
        logger.info(f"Stopping quota monitor for {self.tenant}")
        self.scanner.stop()
        if self.watcher is not None:
            await self.watcher.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self.scheduler.drain()

        logger.info("Performing final quota check")
        await self.manager.run_pass(self.tenant, "shutdown")
        logger.info(f"Quota monitor stopped for {self.tenant}")

    async def run(self, install_signals: bool = True):
        """Run until stopped; a stop requested during startup takes effect once it completes."""
        # Handlers go in before startup so a signal cannot interrupt a transition.
        if install_signals:
            self._install_signal_handlers()
        try:
            await self.start()
            try:
                await self._stop_event.wait()
            finally:
                await self.shutdown()
        finally:
            if install_signals:
                self._remove_signal_handlers()
