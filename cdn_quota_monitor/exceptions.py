"""Exception hierarchy for the CDN quota monitor."""

from typing import Optional

_MIB = 1024 * 1024


class QuotaMonitorError(Exception):
    """Base class for all quota monitor errors."""


class ConfigurationError(QuotaMonitorError):
    """Missing or invalid configuration at startup."""


class ToolingUnavailableError(QuotaMonitorError):
    """The filesystem-watch capability cannot be used."""


class ValidationError(QuotaMonitorError):
    """Invalid tenant name or quota input."""


class SafetyCheckViolation(QuotaMonitorError):
    """Raised when a quota decrease would leave the tenant over quota."""

    def __init__(self, message: str, tenant: str, current_usage_mb: int,
                 current_quota_mb: int, proposed_quota_mb: int,
                 current_usage_bytes: Optional[int] = None):
        super().__init__(message)
        self.tenant = tenant
        self.current_usage_mb = current_usage_mb
        self.current_quota_mb = current_quota_mb
        self.proposed_quota_mb = proposed_quota_mb
        self.current_usage_bytes = current_usage_bytes

    @property
    def shortfall_mb(self) -> int:
        """Space the tenant must free before the decrease can succeed, rounded up to whole MB."""
        if self.current_usage_bytes is None:
            return max(0, self.current_usage_mb - self.proposed_quota_mb)
        excess = self.current_usage_bytes - self.proposed_quota_mb * _MIB
        return max(0, -(-excess // _MIB))


class ConfirmationRequiredError(QuotaMonitorError):
    """Raised when a decrease leaves less than 10% headroom and was not confirmed."""

    def __init__(self, message: str, tenant: str, proposed_quota_mb: int,
                 headroom_mb: int, headroom_pct: int):
        super().__init__(message)
        self.tenant = tenant
        self.proposed_quota_mb = proposed_quota_mb
        self.headroom_mb = headroom_mb
        self.headroom_pct = headroom_pct


class AlertDeliveryFailed(QuotaMonitorError):
    """A notifier could not deliver an alert."""

    def __init__(self, message: str, channel: Optional[str] = None):
        super().__init__(message)
        self.channel = channel


class EnforcementIOError(QuotaMonitorError):
    """Applying or removing read-only enforcement failed on disk."""

    def __init__(self, message: str, tenant: str, action: str):
        super().__init__(message)
        self.tenant = tenant
        self.action = action
