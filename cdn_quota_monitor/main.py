"""Process bootstrap for the quota daemon and administrative commands.

Configuration is loaded once here and passed down explicitly; no component
reads the environment on its own.
"""

import asyncio
import logging
from typing import Optional, Tuple

from . import __version__
from .config import ServerConfig, get_config
from .exceptions import ConfigurationError, ToolingUnavailableError, ValidationError
from .models import validate_tenant_name
from .monitoring.metrics import QuotaMetrics, create_metrics_server
from .monitoring.structured_logging import setup_structured_logging
from .quota.manager import QuotaManager
from .realtime.daemon import TenantQuotaMonitor
from .utils.log_manager import LogManager

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig, tenant: Optional[str] = None) -> LogManager:
    log_manager = LogManager(config.logging, config.paths.log_dir)
    log_manager.setup_logging(tenant)
    setup_structured_logging(config.logging)
    return log_manager


def build_manager(config: Optional[ServerConfig] = None,
                  metrics: Optional[QuotaMetrics] = None) -> Tuple[ServerConfig, QuotaManager]:
    config = config or get_config()
    return config, QuotaManager.from_config(config, metrics=metrics)


def start_metrics(config: ServerConfig) -> Optional[QuotaMetrics]:
    if not config.metrics.enabled:
        return None
    metrics = QuotaMetrics(version=config.app_version)
    create_metrics_server(metrics, config.metrics.port, config.metrics.host)
    return metrics


async def run_monitor(config: ServerConfig, tenant: str,
                      metrics: Optional[QuotaMetrics] = None) -> None:
    _, manager = build_manager(config, metrics)
    monitor = TenantQuotaMonitor(config, tenant, manager, metrics=metrics)
    await monitor.run()


def run_daemon(tenant: str) -> int:
    """Run the per-tenant daemon until a shutdown signal; returns an exit code."""
    try:
        validate_tenant_name(tenant)
        config = get_config()
    except (ConfigurationError, ValidationError) as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Cannot start quota monitor: {e}")
        return 1

    log_manager = setup_logging(config, tenant)
    logger.info(f"cdn-quota-monitor {__version__} starting for {tenant}")
    metrics = start_metrics(config)

    try:
        asyncio.run(run_monitor(config, tenant, metrics))
    except (ConfigurationError, ToolingUnavailableError) as e:
        logger.error(f"Cannot start quota monitor for {tenant}: {e}")
        return 1
    finally:
        log_manager.close()
    return 0
