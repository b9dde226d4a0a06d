"""Usage percentage and threshold classification."""

from typing import Optional

from ..config import ThresholdConfig
from ..exceptions import ValidationError
from ..models import QuotaLevel

DEFAULT_THRESHOLDS = ThresholdConfig()


def usage_percentage(usage_bytes: int, quota_bytes: int) -> int:
    """``floor(usage * 100 / quota)``; quota must be positive."""
    if quota_bytes <= 0:
        raise ValidationError(f"Quota must be positive, got {quota_bytes} bytes")
    if usage_bytes < 0:
        raise ValidationError(f"Usage must not be negative, got {usage_bytes} bytes")
    return usage_bytes * 100 // quota_bytes


def classify_percentage(pct: int, thresholds: Optional[ThresholdConfig] = None) -> QuotaLevel:
    thresholds = thresholds or DEFAULT_THRESHOLDS
    if pct >= thresholds.over:
        return QuotaLevel.OVER
    if pct >= thresholds.critical:
        return QuotaLevel.CRITICAL
    if pct >= thresholds.warning:
        return QuotaLevel.WARNING
    return QuotaLevel.OK


def classify(usage_bytes: int, quota_bytes: int,
             thresholds: Optional[ThresholdConfig] = None) -> QuotaLevel:
    return classify_percentage(usage_percentage(usage_bytes, quota_bytes), thresholds)
