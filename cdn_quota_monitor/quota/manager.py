"""Central manager wiring accounting, alerting, enforcement and state."""

import asyncio
import dataclasses
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import structlog

from ..config import ServerConfig
from ..exceptions import EnforcementIOError
from ..models import (
    AlertKind,
    EnforcementState,
    QuotaLevel,
    Tenant,
    UsageSnapshot,
)
from ..monitoring.alerts import AlertDispatcher, AlertNotifier, CooldownCache
from ..monitoring.metrics import QuotaMetrics
from ..monitoring.structured_logging import with_pass_id
from ..tenants import list_tenants, resolve_tenant
from .accountant import UsageAccountant
from .classifier import classify_percentage, usage_percentage
from .enforcement import EnforcementController
from .registry import QuotaChange, QuotaRegistry
from .state_recorder import StateRecorder

SECONDS_PER_DAY = 86400


@dataclass
class QuotaSummary:
    """Result of checking every tenant."""

    snapshots: List[UsageSnapshot] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=lambda: {level.value: 0 for level in QuotaLevel})

    @property
    def total(self) -> int:
        return len(self.snapshots)

    def add(self, snapshot: UsageSnapshot):
        self.snapshots.append(snapshot)
        self.counts[snapshot.level.value] += 1


class QuotaManager:
    """Runs accounting passes and administrative quota operations.

    An accounting pass measures usage, classifies it, sends threshold alerts,
    enforces on OVER, and records the snapshot. Pass-local failures are logged
    and never propagate out of ``run_pass``.
    """

    def __init__(self, config: ServerConfig, accountant: UsageAccountant,
                 registry: QuotaRegistry, dispatcher: AlertDispatcher,
                 enforcement: EnforcementController, recorder: StateRecorder,
                 monitor_cooldowns: CooldownCache,
                 metrics: Optional[QuotaMetrics] = None):
        self.config = config
        self.accountant = accountant
        self.registry = registry
        self.dispatcher = dispatcher
        self.enforcement = enforcement
        self.recorder = recorder
        self.monitor_cooldowns = monitor_cooldowns
        self.metrics = metrics
        self.logger = structlog.get_logger("quota_manager")

    @classmethod
    def from_config(cls, config: ServerConfig, metrics: Optional[QuotaMetrics] = None,
                    notifiers: Optional[List[AlertNotifier]] = None,
                    clock: Callable[[], float] = time.time) -> "QuotaManager":
        paths = config.paths
        dispatch_cooldowns = CooldownCache(
            paths.alerts_sent_dir, config.alerts.dispatch_cooldowns, clock=clock, name="dispatch"
        )
        monitor_cooldowns = CooldownCache(
            paths.monitor_alert_dir, config.alerts.monitor_cooldowns, clock=clock, name="monitor"
        )
        dispatcher = AlertDispatcher(
            config.alerts, paths.tenants_dir, dispatch_cooldowns,
            notifiers=notifiers, metrics=metrics,
        )
        accountant = UsageAccountant()

        def usage_bytes(name: str) -> int:
            return accountant.usage_bytes(resolve_tenant(paths, name))

        registry = QuotaRegistry(
            paths.quota_dir,
            default_quota_mb=config.monitor.default_quota_mb,
            usage_bytes_fn=usage_bytes,
            cooldown_caches=[dispatch_cooldowns, monitor_cooldowns],
        )
        enforcement = EnforcementController(
            config.enforcement, paths.state_dir, dispatcher=dispatcher,
            metrics=metrics, clock=clock,
        )
        return cls(
            config, accountant, registry, dispatcher, enforcement,
            StateRecorder(paths.state_dir), monitor_cooldowns, metrics=metrics,
        )

    def tenant(self, name: str) -> Tenant:
        return resolve_tenant(self.config.paths, name)

    # Accounting

    async def measure(self, name: str) -> UsageSnapshot:
        """Compute a snapshot without alerting, enforcing or recording."""
        tenant = self.tenant(name)
        breakdown = await self.accountant.measure_async(tenant)
        quota_bytes = self.registry.get(name)
        pct = usage_percentage(breakdown.total_bytes, quota_bytes)
        return UsageSnapshot(
            tenant=name,
            usage_bytes=breakdown.total_bytes,
            quota_bytes=quota_bytes,
            usage_pct=pct,
            level=classify_percentage(pct, self.config.thresholds),
            enforcement_state=self.enforcement.get_state(name),
            uploads_bytes=breakdown.uploads_bytes,
            published_bytes=breakdown.published_bytes,
        )

    async def _alert(self, snapshot: UsageSnapshot, gated: bool):
        kind = AlertKind.for_level(snapshot.level)
        if kind is None:
            return
        if not gated:
            await self.dispatcher.send_threshold_alert(snapshot)
            return
        result = await self.monitor_cooldowns.run_once(
            snapshot.tenant, kind, lambda: self.dispatcher.send_threshold_alert(snapshot)
        )
        if result is None:
            self.logger.debug("Threshold alert throttled", tenant=snapshot.tenant, kind=kind.value)

    async def _apply_enforcement(self, tenant: Tenant, snapshot: UsageSnapshot) -> UsageSnapshot:
        try:
            if snapshot.level is QuotaLevel.OVER:
                await self.enforcement.enforce(tenant, snapshot, automatic=True)
            elif (snapshot.enforcement_state is EnforcementState.ENFORCED
                  and self.config.enforcement.auto_restore):
                await self.enforcement.unenforce(tenant, snapshot, automatic=True)
        except EnforcementIOError as e:
            self.logger.error(
                "Enforcement transition failed",
                tenant=tenant.name, action=e.action, error=str(e),
                event_type="enforcement_error"
            )
        return dataclasses.replace(snapshot, enforcement_state=self.enforcement.get_state(tenant.name))

    @with_pass_id
    async def run_pass(self, name: str, trigger: str = "event", gated: bool = True) -> Optional[UsageSnapshot]:
        """One accounting pass; returns the recorded snapshot or None on failure.

        ``gated`` applies the monitor cooldown in front of the dispatcher, as
        the real-time daemon does.
        """
        start = time.perf_counter()
        status = "success"
        snapshot = None
        try:
            tenant = self.tenant(name)
            snapshot = await self.measure(name)
            self.logger.info(
                "Accounting pass",
                tenant=name, trigger=trigger,
                used_mb=snapshot.used_mb, quota_mb=snapshot.quota_mb,
                usage_pct=snapshot.usage_pct, level=snapshot.level.value,
                event_type="accounting_pass"
            )
            await self._alert(snapshot, gated)
            snapshot = await self._apply_enforcement(tenant, snapshot)
            await asyncio.to_thread(self.recorder.record, snapshot)
            if self.metrics:
                self.metrics.record_snapshot(snapshot)
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception as e:
            status = "error"
            self.logger.error(
                "Accounting pass failed",
                tenant=name, trigger=trigger, error=str(e), exc_info=True,
                event_type="accounting_pass_error"
            )
            snapshot = None
        finally:
            if self.metrics:
                self.metrics.record_pass(name, trigger, time.perf_counter() - start, status)
        return snapshot

    # Administrative operations

    async def set_quota(self, name: str, quota_mb: int) -> QuotaChange:
        return self.registry.set(name, quota_mb)

    async def increase_quota(self, name: str, delta_mb: int) -> QuotaChange:
        return self.registry.increase(name, delta_mb)

    async def decrease_quota(self, name: str, delta_mb: int, confirm: bool = False) -> QuotaChange:
        # The safety check scans the tenant's trees.
        return await asyncio.to_thread(self.registry.decrease, name, delta_mb, confirm)

    async def enforce(self, name: str) -> UsageSnapshot:
        tenant = self.tenant(name)
        snapshot = await self.measure(name)
        await self.enforcement.enforce(tenant, snapshot, automatic=False)
        snapshot = dataclasses.replace(snapshot, enforcement_state=self.enforcement.get_state(name))
        await asyncio.to_thread(self.recorder.record, snapshot)
        return snapshot

    async def unenforce(self, name: str) -> UsageSnapshot:
        tenant = self.tenant(name)
        snapshot = await self.measure(name)
        await self.enforcement.unenforce(tenant, snapshot, automatic=False)
        snapshot = dataclasses.replace(snapshot, enforcement_state=self.enforcement.get_state(name))
        await asyncio.to_thread(self.recorder.record, snapshot)
        return snapshot

    async def reconcile(self, name: str) -> EnforcementState:
        return await self.enforcement.reconcile(self.tenant(name))

    def get_snapshot(self, name: str) -> Optional[UsageSnapshot]:
        self.tenant(name)
        return self.recorder.get(name)

    def get_snapshot_all(self) -> List[UsageSnapshot]:
        return self.recorder.get_all()

    async def show_quota(self, name: str) -> UsageSnapshot:
        """Current usage breakdown; nothing is sent or written."""
        return await self.measure(name)

    async def check_quota(self, name: str) -> Optional[UsageSnapshot]:
        """One full accounting pass outside the daemon."""
        return await self.run_pass(name, trigger="admin", gated=False)

    async def check_all(self) -> QuotaSummary:
        """Classify every tenant under the uploads root."""
        summary = QuotaSummary()
        for name in list_tenants(self.config.paths):
            summary.add(await self.measure(name))
        return summary

    def cleanup_old_alerts(self, max_age_days: int = 7) -> int:
        removed = self.dispatcher.cooldowns.cleanup(max_age_days * SECONDS_PER_DAY)
        self.logger.info("Old alert records removed", removed=removed, max_age_days=max_age_days)
        return removed
