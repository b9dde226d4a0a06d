"""Prometheus metrics for the quota monitor."""

import logging
import sys
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Enum,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    start_http_server,
)

from ..models import UsageSnapshot

logger = logging.getLogger(__name__)


class QuotaMetrics:
    """Centralized metrics collection for one monitor process."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, version: str = "1.0.0"):
        self.registry = registry or CollectorRegistry()

        self._init_usage_metrics()
        self._init_pass_metrics()
        self._init_alert_metrics()

        self.server_info = Info(
            'cdn_quota_monitor',
            'Quota monitor information',
            registry=self.registry
        )
        self.server_info.info({
            'version': version,
            'python_version': f"{sys.version_info.major}.{sys.version_info.minor}",
        })

    def _init_usage_metrics(self):
        self.usage_bytes = Gauge(
            'cdn_quota_usage_bytes',
            'Billable usage in bytes',
            ['tenant'],
            registry=self.registry
        )

        self.quota_bytes = Gauge(
            'cdn_quota_limit_bytes',
            'Configured quota in bytes',
            ['tenant'],
            registry=self.registry
        )

        self.usage_percent = Gauge(
            'cdn_quota_usage_percent',
            'Usage as an integer percentage of quota',
            ['tenant'],
            registry=self.registry
        )

        self.enforcement_state = Enum(
            'cdn_quota_enforcement_state',
            'Enforcement state of the upload area',
            ['tenant'],
            states=['active', 'enforced'],
            registry=self.registry
        )

    def _init_pass_metrics(self):
        self.passes_total = Counter(
            'cdn_quota_passes_total',
            'Accounting passes run',
            ['tenant', 'trigger', 'status'],
            registry=self.registry
        )

        self.pass_duration = Histogram(
            'cdn_quota_pass_duration_seconds',
            'Accounting pass duration',
            ['tenant'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0],
            registry=self.registry
        )

        self.passes_in_flight = Gauge(
            'cdn_quota_passes_in_flight',
            'Accounting passes currently running',
            ['tenant'],
            registry=self.registry
        )

        self.events_total = Counter(
            'cdn_quota_fs_events_total',
            'Filesystem events received',
            ['tenant', 'outcome'],  # scheduled, coalesced
            registry=self.registry
        )

    def _init_alert_metrics(self):
        self.alerts_total = Counter(
            'cdn_quota_alerts_total',
            'Alert dispatch outcomes',
            ['tenant', 'kind', 'status'],  # sent, suppressed, failed
            registry=self.registry
        )

        self.enforcement_errors = Counter(
            'cdn_quota_enforcement_errors_total',
            'Failed enforcement transitions',
            ['tenant', 'action'],
            registry=self.registry
        )

    # Convenience methods

    def record_snapshot(self, snapshot: UsageSnapshot):
        self.usage_bytes.labels(tenant=snapshot.tenant).set(snapshot.usage_bytes)
        self.quota_bytes.labels(tenant=snapshot.tenant).set(snapshot.quota_bytes)
        self.usage_percent.labels(tenant=snapshot.tenant).set(snapshot.usage_pct)
        self.enforcement_state.labels(tenant=snapshot.tenant).state(snapshot.enforcement_state.value)

    def record_pass(self, tenant: str, trigger: str, duration: float, status: str = "success"):
        self.passes_total.labels(tenant=tenant, trigger=trigger, status=status).inc()
        self.pass_duration.labels(tenant=tenant).observe(duration)

    def record_alert(self, tenant: str, kind: str, status: str):
        self.alerts_total.labels(tenant=tenant, kind=kind, status=status).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')


def create_metrics_server(metrics: QuotaMetrics, port: int = 9105, host: str = "127.0.0.1") -> bool:
    """Start the Prometheus exposition server; failure is logged, not fatal."""
    try:
        start_http_server(port, host, registry=metrics.registry)
        logger.info(f"Prometheus metrics server started on {host}:{port}")
        return True
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")
        return False
