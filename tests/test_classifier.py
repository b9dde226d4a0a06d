"""Tests for usage percentage and threshold classification."""

import pytest

from cdn_quota_monitor.config import ThresholdConfig
from cdn_quota_monitor.exceptions import ValidationError
from cdn_quota_monitor.models import QuotaLevel
from cdn_quota_monitor.quota.classifier import classify, usage_percentage


@pytest.mark.parametrize("pct,expected", [
    (0, QuotaLevel.OK),
    (79, QuotaLevel.OK),
    (80, QuotaLevel.WARNING),
    (89, QuotaLevel.WARNING),
    (90, QuotaLevel.CRITICAL),
    (99, QuotaLevel.CRITICAL),
    (100, QuotaLevel.OVER),
    (250, QuotaLevel.OVER),
])
def test_level_boundaries(pct, expected):
    """Test the 80/90/100 boundaries."""
    assert classify(pct, 100) == expected


def test_percentage_truncates():
    """Test that the percentage is floored, never rounded."""
    assert usage_percentage(899, 1000) == 89
    assert classify(899, 1000) == QuotaLevel.WARNING
    assert usage_percentage(999_999, 1_000_000) == 99


def test_zero_quota_rejected():
    """Test that a non-positive quota is refused instead of dividing by zero."""
    with pytest.raises(ValidationError):
        classify(10, 0)
    with pytest.raises(ValidationError):
        usage_percentage(10, -5)


def test_custom_thresholds():
    """Test that configured thresholds override the defaults."""
    thresholds = ThresholdConfig(warning=50, critical=70, over=95)

    assert classify(49, 100, thresholds) == QuotaLevel.OK
    assert classify(50, 100, thresholds) == QuotaLevel.WARNING
    assert classify(70, 100, thresholds) == QuotaLevel.CRITICAL
    assert classify(95, 100, thresholds) == QuotaLevel.OVER
