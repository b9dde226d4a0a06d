"""Tests for quota limits and the safe-decrease rules."""

import pytest

from cdn_quota_monitor.exceptions import (
    ConfirmationRequiredError,
    SafetyCheckViolation,
    ValidationError,
)
from cdn_quota_monitor.models import MIB, AlertKind
from cdn_quota_monitor.monitoring.alerts import CooldownCache
from cdn_quota_monitor.quota.registry import QuotaRegistry


@pytest.fixture
def usage():
    return {"acme": 0}


@pytest.fixture
def registry(tmp_path, usage):
    return QuotaRegistry(tmp_path / "quotas", usage_bytes_fn=lambda name: usage[name])


def test_default_quota_when_unset(registry):
    """Test that a tenant without a record gets 100 MiB."""
    assert registry.get("acme") == 100 * MIB
    assert registry.get_mb("acme") == 100


def test_set_persists_bytes(registry, tmp_path):
    """Test that set stores the quota in bytes."""
    change = registry.set("acme", 250)

    assert (tmp_path / "quotas" / "acme.quota").read_text().strip() == str(250 * MIB)
    assert registry.get("acme") == 250 * MIB
    assert (change.old_mb, change.new_mb) == (100, 250)


@pytest.mark.parametrize("bad", [0, -1, "10", 1.5, True, None])
def test_set_rejects_invalid_amounts(registry, tmp_path, bad):
    """Test that non-integer or non-positive quotas are refused before writing."""
    with pytest.raises(ValidationError):
        registry.set("acme", bad)
    assert not (tmp_path / "quotas" / "acme.quota").exists()


@pytest.mark.parametrize("name", ["Acme", "acme corp", "../etc", ""])
def test_invalid_tenant_names(registry, name):
    """Test that tenant names outside [a-z0-9_-] are refused."""
    with pytest.raises(ValidationError):
        registry.set(name, 10)


def test_increase_adds_to_current(registry):
    """Test that increase adds the delta to the stored quota."""
    registry.set("acme", 100)
    change = registry.increase("acme", 50)

    assert change.new_mb == 150
    assert registry.get_mb("acme") == 150


def test_decrease_below_usage_rejected(registry, usage):
    """Test that a decrease under current usage fails and changes nothing."""
    registry.set("acme", 100)
    usage["acme"] = 101 * MIB

    with pytest.raises(SafetyCheckViolation) as exc_info:
        registry.decrease("acme", 60)

    error = exc_info.value
    assert error.current_usage_mb == 101
    assert error.proposed_quota_mb == 40
    assert error.shortfall_mb == 61
    assert registry.get_mb("acme") == 100


def test_decrease_below_one_megabyte_rejected(registry):
    """Test that a decrease cannot take the quota below 1MB."""
    registry.set("acme", 10)

    with pytest.raises(SafetyCheckViolation):
        registry.decrease("acme", 10)
    assert registry.get_mb("acme") == 10


def test_low_headroom_requires_confirmation(registry, usage):
    """Test that under 10% headroom needs an explicit confirmation."""
    registry.set("acme", 100)
    usage["acme"] = 46 * MIB

    with pytest.raises(ConfirmationRequiredError) as exc_info:
        registry.decrease("acme", 50)
    assert exc_info.value.headroom_mb == 4
    assert exc_info.value.headroom_pct == 8
    assert registry.get_mb("acme") == 100

    change = registry.decrease("acme", 50, confirm=True)
    assert change.new_mb == 50
    assert change.headroom_pct == 8


def test_decrease_with_ample_headroom(registry, usage):
    """Test that a safe decrease commits without confirmation."""
    registry.set("acme", 100)
    usage["acme"] = 20 * MIB

    change = registry.decrease("acme", 30)

    assert change.new_mb == 70
    assert change.headroom_mb == 50
    assert change.headroom_pct == 71


def test_quota_change_clears_alert_cooldowns(tmp_path, clock):
    """Test that any quota change resets alerting history for the tenant."""
    dispatch = CooldownCache(tmp_path / "sent", {"warning": 86400}, clock=clock)
    monitor = CooldownCache(tmp_path / "monitor", {"warning": 3600}, clock=clock)
    dispatch.mark("acme", AlertKind.WARNING)
    dispatch.mark("other", AlertKind.WARNING)
    monitor.mark("acme", AlertKind.WARNING)
    registry = QuotaRegistry(tmp_path / "quotas", cooldown_caches=[dispatch, monitor])

    registry.increase("acme", 10)

    assert not dispatch.in_cooldown("acme", AlertKind.WARNING)
    assert not monitor.in_cooldown("acme", AlertKind.WARNING)
    assert dispatch.in_cooldown("other", AlertKind.WARNING)


def test_unreadable_record_falls_back_to_default(registry, tmp_path):
    """Test that a corrupt quota record is treated as unset."""
    (tmp_path / "quotas").mkdir()
    (tmp_path / "quotas" / "acme.quota").write_text("lots\n")

    assert registry.get("acme") == 100 * MIB


def test_decrease_refused_for_partial_megabyte_over(registry, usage):
    """Test that usage one byte over the proposed limit blocks the decrease, even when confirmed."""
    registry.set("acme", 200)
    usage["acme"] = 100 * MIB + 1

    with pytest.raises(SafetyCheckViolation) as exc_info:
        registry.decrease("acme", 100, confirm=True)

    assert exc_info.value.current_usage_mb == 100
    assert exc_info.value.shortfall_mb == 1
    assert registry.get_mb("acme") == 200


def test_decrease_to_exact_usage_needs_confirmation(registry, usage):
    """Test that a limit equal to usage is allowed only with confirmation."""
    registry.set("acme", 200)
    usage["acme"] = 100 * MIB

    with pytest.raises(ConfirmationRequiredError):
        registry.decrease("acme", 100)

    change = registry.decrease("acme", 100, confirm=True)
    assert (change.new_mb, change.headroom_mb, change.headroom_pct) == (100, 0, 0)
