"""Shared fixtures: an isolated directory layout, a fake clock and a recording notifier."""

import os
from pathlib import Path
from typing import List

import pytest

from cdn_quota_monitor.config import (
    AlertConfig,
    EnforcementConfig,
    LoggingConfig,
    MetricsConfig,
    MonitorConfig,
    PathsConfig,
    ServerConfig,
    ThresholdConfig,
)
from cdn_quota_monitor.models import MIB
from cdn_quota_monitor.monitoring.alerts import AlertMessage, AlertNotifier
from cdn_quota_monitor.quota.manager import QuotaManager


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingNotifier(AlertNotifier):
    """Notifier that remembers every message and can be told to fail."""

    name = "recording"

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.messages: List[AlertMessage] = []

    async def send(self, message: AlertMessage) -> bool:
        self.messages.append(message)
        return self.succeed

    def kinds(self) -> List[str]:
        return [m.kind.value for m in self.messages]


def write_sized(path: Path, size: int) -> Path:
    """Create a sparse file whose apparent size is ``size`` bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as handle:
        handle.truncate(size)
    return path


def make_config(root: Path, auto_restore: bool = False, **monitor) -> ServerConfig:
    monitor_settings = {"debounce_seconds": 0.05, "fallback_interval": 3600.0}
    monitor_settings.update(monitor)
    return ServerConfig(
        environment="development",
        paths=PathsConfig(
            uploads_root=root / "sftp",
            published_root=root / "www",
            vcs_root=root / "git",
            quota_dir=root / "quotas",
            tenants_dir=root / "tenants",
            state_dir=root / "state",
            log_dir=root / "log",
        ),
        thresholds=ThresholdConfig(),
        monitor=MonitorConfig(**monitor_settings),
        alerts=AlertConfig(admin_email="ops@example.com", cdn_domain="cdn.example.com"),
        enforcement=EnforcementConfig(auto_restore=auto_restore),
        logging=LoggingConfig(),
        metrics=MetricsConfig(),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def tenant_dirs(config):
    """Provision tenant ``acme`` the way the provisioning layer would."""
    paths = config.paths
    uploads = paths.uploads_path("acme")
    published = paths.published_path("acme")
    vcs = paths.vcs_path("acme")
    for directory in (uploads, published, vcs):
        directory.mkdir(parents=True)
    os.chmod(uploads, 0o755)
    paths.tenants_dir.mkdir(parents=True)
    (paths.tenants_dir / "acme.env").write_text("CONTACT_EMAIL=owner@acme.test\n")
    return {"uploads": uploads, "published": published, "vcs": vcs}


@pytest.fixture
def manager(config, notifier, clock):
    return QuotaManager.from_config(config, notifiers=[notifier], clock=clock)


@pytest.fixture
def sized_file():
    return write_sized


@pytest.fixture
def config_factory(tmp_path):
    def factory(**kwargs):
        return make_config(tmp_path, **kwargs)
    return factory

