"""Tests for the last-known snapshot records."""

import os
from datetime import datetime, timezone

import pytest

from cdn_quota_monitor.models import MIB, EnforcementState, QuotaLevel, UsageSnapshot
from cdn_quota_monitor.quota.state_recorder import StateRecorder


def snapshot(tenant: str, used_mb: int, quota_mb: int = 100, **kwargs) -> UsageSnapshot:
    pct = used_mb * 100 // quota_mb
    return UsageSnapshot(
        tenant=tenant,
        usage_bytes=used_mb * MIB,
        quota_bytes=quota_mb * MIB,
        usage_pct=pct,
        level=kwargs.pop("level", QuotaLevel.OK),
        last_check=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        **kwargs,
    )


def test_record_and_read_back(tmp_path):
    """A recorded snapshot is returned with the same fields."""
    recorder = StateRecorder(tmp_path / "state")
    original = snapshot("acme", 85, level=QuotaLevel.WARNING,
                        enforcement_state=EnforcementState.ACTIVE,
                        uploads_bytes=80 * MIB, published_bytes=5 * MIB)

    assert recorder.record(original) is True
    loaded = recorder.get("acme")

    assert loaded == original
    record = (tmp_path / "state" / "acme.state").read_text()
    assert "USED_MB=85" in record
    assert "LEVEL=warning" in record


def test_last_write_wins(tmp_path):
    recorder = StateRecorder(tmp_path)
    recorder.record(snapshot("acme", 10))
    recorder.record(snapshot("acme", 95, level=QuotaLevel.CRITICAL))

    assert recorder.get("acme").used_mb == 95
    assert recorder.get("acme").level is QuotaLevel.CRITICAL


def test_missing_tenant_returns_none(tmp_path):
    assert StateRecorder(tmp_path).get("nobody") is None
    assert StateRecorder(tmp_path / "absent").get_all() == []


def test_get_all_skips_malformed_records(tmp_path):
    """Corrupt records are ignored instead of failing the whole listing."""
    recorder = StateRecorder(tmp_path)
    recorder.record(snapshot("beta", 20))
    recorder.record(snapshot("acme", 30))
    (tmp_path / "broken.state").write_text("TENANT=broken\nUSAGE_BYTES=lots\n")

    tenants = [s.tenant for s in recorder.get_all()]

    assert tenants == ["acme", "beta"]


@pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0,
                    reason="root ignores directory permissions")
def test_record_failure_is_not_raised(tmp_path):
    """An unwritable state directory is logged and reported, never raised."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    os.chmod(state_dir, 0o555)
    try:
        assert StateRecorder(state_dir).record(snapshot("acme", 10)) is False
    finally:
        os.chmod(state_dir, 0o755)
