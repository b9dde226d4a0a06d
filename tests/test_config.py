"""Tests for environment-based configuration loading."""

from unittest.mock import patch

import pytest

from cdn_quota_monitor.config import (
    AlertConfig,
    MonitorConfig,
    ThresholdConfig,
    load_config,
    validate_config_file,
)
from cdn_quota_monitor.exceptions import ConfigurationError


@pytest.fixture
def no_system_config(tmp_path):
    with patch("cdn_quota_monitor.config.SYSTEM_CONFIG_FILE", str(tmp_path / "missing.env")):
        yield


def test_defaults(monkeypatch, no_system_config):
    """Unset variables fall back to the documented defaults."""
    for key in ("SFTP_DIR", "QUOTA_DIR", "THRESHOLD_WARNING", "DEBOUNCE_SECONDS",
                "CHECK_INTERVAL", "MAX_CONCURRENT_CHECKS", "ENFORCEMENT_AUTO_RESTORE",
                "ALERT_DISPATCH_COOLDOWNS", "ALERT_MONITOR_COOLDOWNS", "ENVIRONMENT"):
        monkeypatch.delenv(key, raising=False)

    config = load_config()

    assert str(config.paths.uploads_root) == "/home/sftp"
    assert config.thresholds.warning == 80
    assert config.monitor.debounce_seconds == 3.0
    assert config.monitor.fallback_interval == 300.0
    assert config.monitor.max_concurrent_passes == 5
    assert config.enforcement.auto_restore is False
    assert config.alerts.dispatch_cooldowns["warning"] == 86400
    assert config.alerts.dispatch_cooldowns["enforced"] == 0
    assert config.alerts.monitor_cooldowns["critical"] == 3600


def test_environment_overrides(monkeypatch, tmp_path, no_system_config):
    monkeypatch.setenv("SFTP_DIR", str(tmp_path / "sftp"))
    monkeypatch.setenv("DEBOUNCE_SECONDS", "0.5")
    monkeypatch.setenv("WATCH_BACKEND", "INOTIFYWAIT")
    monkeypatch.setenv("WATCH_EXCLUDED_DIRS", ".git, .cache")
    monkeypatch.setenv("ENFORCEMENT_AUTO_RESTORE", "yes")
    monkeypatch.setenv("ALERT_MONITOR_COOLDOWNS", "warning=60,over=0")

    config = load_config()

    assert config.paths.uploads_path("acme") == tmp_path / "sftp" / "acme" / "files"
    assert config.monitor.debounce_seconds == 0.5
    assert config.monitor.watch_backend == "inotifywait"
    assert config.monitor.excluded_dirs == [".git", ".cache"]
    assert config.enforcement.auto_restore is True
    assert config.alerts.monitor_cooldowns == {"warning": 60, "critical": 3600, "over": 0}


@pytest.mark.parametrize("key,value", [
    ("THRESHOLD_CRITICAL", "70"),
    ("DEBOUNCE_SECONDS", "0"),
    ("MAX_CONCURRENT_CHECKS", "0"),
    ("WATCH_BACKEND", "polling"),
    ("LOG_LEVEL", "chatty"),
    ("ALERT_DISPATCH_COOLDOWNS", "warning"),
    ("ALERT_MONITOR_COOLDOWNS", "critical=-5"),
    ("METRICS_PORT", "70000"),
])
def test_invalid_values_raise_configuration_error(monkeypatch, no_system_config, key, value):
    """Invalid settings surface as ConfigurationError."""
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigurationError):
        load_config()


def test_system_config_file_is_read(monkeypatch, tmp_path):
    """Values from the system file apply when the environment does not set them."""
    system_file = tmp_path / "config.env"
    system_file.write_text("CHECK_INTERVAL=42\n")
    # undo removes whatever the file loads into the environment
    monkeypatch.setenv("CHECK_INTERVAL", "0")
    monkeypatch.delenv("CHECK_INTERVAL")

    with patch("cdn_quota_monitor.config.SYSTEM_CONFIG_FILE", str(system_file)):
        config = load_config()

    assert config.monitor.fallback_interval == 42.0


def test_validate_config_file(monkeypatch, tmp_path, no_system_config):
    good = tmp_path / "good.env"
    good.write_text("THRESHOLD_WARNING=75\n")
    bad = tmp_path / "bad.env"
    bad.write_text("THRESHOLD_WARNING=95\n")
    monkeypatch.delenv("THRESHOLD_WARNING", raising=False)
    monkeypatch.delenv("THRESHOLD_CRITICAL", raising=False)

    assert validate_config_file(str(good)) is True
    assert validate_config_file(str(bad)) is False
    assert validate_config_file(str(tmp_path / "absent.env")) is False


def test_threshold_ordering_enforced():
    with pytest.raises(ValueError):
        ThresholdConfig(warning=90, critical=90)


def test_model_defaults():
    assert MonitorConfig().watch_backend == "watchfiles"
    assert AlertConfig().dispatch_cooldowns["restored"] == 0
