"""Monitoring and observability components for the quota monitor."""

from .alerts import (
    AlertDispatcher,
    AlertMessage,
    AlertNotifier,
    CooldownCache,
    LogNotifier,
    SmtpNotifier,
    WebhookNotifier,
    build_notifiers,
)
from .metrics import QuotaMetrics, create_metrics_server
from .structured_logging import (
    LoggingContext,
    get_audit_logger,
    setup_structured_logging,
    with_pass_id,
)

__all__ = [
    'AlertDispatcher', 'AlertMessage', 'AlertNotifier', 'CooldownCache',
    'LogNotifier', 'SmtpNotifier', 'WebhookNotifier', 'build_notifiers',
    'QuotaMetrics', 'create_metrics_server',
    'LoggingContext', 'get_audit_logger', 'setup_structured_logging', 'with_pass_id',
]
