"""Structured logging with tenant and accounting-pass correlation."""

import logging
import os
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional

import structlog
from structlog.types import FilteringBoundLogger

from ..config import LoggingConfig

# Context variables for correlation
tenant_id: ContextVar[str] = ContextVar('tenant_id', default='')
pass_id: ContextVar[str] = ContextVar('pass_id', default='')
trigger: ContextVar[str] = ContextVar('trigger', default='')


class PassContextProcessor:
    """Processor to add tenant and pass correlation to log records."""

    def __call__(self, logger: FilteringBoundLogger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        if tenant_id.get() and 'tenant' not in event_dict:
            event_dict['tenant'] = tenant_id.get()
        if pass_id.get():
            event_dict['pass_id'] = pass_id.get()
        if trigger.get():
            event_dict['trigger'] = trigger.get()

        if 'timestamp' not in event_dict:
            event_dict['timestamp'] = time.time()

        return event_dict


class PerformanceProcessor:
    """Processor to add process statistics to log events."""

    def __call__(self, logger: FilteringBoundLogger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        import psutil

        try:
            process = psutil.Process(os.getpid())
            event_dict['process'] = {
                'pid': os.getpid(),
                'memory_mb': round(process.memory_info().rss / 1024 / 1024, 2),
                'cpu_percent': process.cpu_percent(),
            }
        except psutil.Error:
            pass  # Process info not available

        return event_dict


class SensitiveDataFilter:
    """Filter sensitive data from log records."""

    SENSITIVE_KEYS = {
        'password', 'token', 'secret', 'credential', 'smtp_password', 'api_key',
    }

    def __call__(self, logger: FilteringBoundLogger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        return self._filter_dict(event_dict)

    def _filter_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        filtered = {}

        for key, value in data.items():
            if isinstance(key, str) and any(sensitive in key.lower() for sensitive in self.SENSITIVE_KEYS):
                filtered[key] = '[REDACTED]'
            elif isinstance(value, dict):
                filtered[key] = self._filter_dict(value)
            else:
                filtered[key] = value

        return filtered


class StructuredLogger:
    """Configures structlog to render through the standard logging tree."""

    def __init__(self, config: LoggingConfig):
        self.config = config
        self._configure_structlog()

    def _configure_structlog(self):
        processors = [
            PassContextProcessor(),
            SensitiveDataFilter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]

        if self.config.enable_profiling:
            processors.append(PerformanceProcessor())

        if self.config.format == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=False))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(
                getattr(logging, self.config.level)
            ),
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )


class LoggingContext:
    """Context manager binding tenant and pass identifiers."""

    _VARS = {'tenant_id': tenant_id, 'pass_id': pass_id, 'trigger': trigger}

    def __init__(self, **context_data):
        self.context_data = context_data
        self.tokens = {}

    def __enter__(self):
        for key, value in self.context_data.items():
            var = self._VARS.get(key)
            if var is not None:
                self.tokens[key] = var.set(str(value))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for key, token in self.tokens.items():
            self._VARS[key].reset(token)


def with_pass_id(func):
    """Decorator running a coroutine under a fresh accounting-pass id."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        with LoggingContext(pass_id=uuid.uuid4().hex[:12]):
            return await func(*args, **kwargs)
    return wrapper


class AuditLogger:
    """Specialized logger for administrative actions."""

    def __init__(self):
        self.logger = structlog.get_logger("audit")

    def log_quota_change(self, tenant: str, action: str, old_mb: int, new_mb: int,
                         actor: str = "admin"):
        self.logger.info(
            "quota_change",
            tenant=tenant,
            action=action,
            old_mb=old_mb,
            new_mb=new_mb,
            actor=actor,
            event_type="quota_change"
        )

    def log_quota_rejected(self, tenant: str, action: str, reason: str):
        self.logger.warning(
            "quota_change_rejected",
            tenant=tenant,
            action=action,
            reason=reason,
            event_type="quota_change"
        )

    def log_enforcement(self, tenant: str, state: str, usage_pct: int, automatic: bool):
        self.logger.warning(
            "enforcement_transition",
            tenant=tenant,
            state=state,
            usage_pct=usage_pct,
            automatic=automatic,
            event_type="enforcement"
        )


# Global instances
_structured_logger: Optional[StructuredLogger] = None
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger instance."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def setup_structured_logging(config: LoggingConfig) -> StructuredLogger:
    """Initialize structured logging for the process."""
    global _structured_logger
    _structured_logger = StructuredLogger(config)

    logger = structlog.get_logger("cdn_quota")
    logger.debug("Structured logging initialized", component="logging")
    return _structured_logger
