"""Tests for the administrative command line."""

import os
import stat
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from cdn_quota_monitor import __version__
from cdn_quota_monitor.cli import (
    EXIT_ERROR,
    EXIT_INVALID,
    EXIT_UNCONFIRMED,
    EXIT_UNSAFE,
    app,
)
from cdn_quota_monitor.exceptions import ConfigurationError
from cdn_quota_monitor.models import MIB

runner = CliRunner()


@pytest.fixture
def cli(config, manager, tenant_dirs):
    """Point the CLI at the test manager."""
    with patch("cdn_quota_monitor.cli.build_manager", return_value=(config, manager)), \
            patch("cdn_quota_monitor.cli.setup_logging"):
        yield manager


def quota_file(config, tenant="acme"):
    return config.paths.quota_dir / f"{tenant}.quota"


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_set_and_increase(cli, config):
    result = runner.invoke(app, ["quota", "set", "acme", "200"])
    assert result.exit_code == 0, result.output
    assert "100MB -> 200MB" in result.output

    result = runner.invoke(app, ["quota", "increase", "acme", "50"])
    assert result.exit_code == 0, result.output
    assert quota_file(config).read_text().strip() == str(250 * MIB)


@pytest.mark.parametrize("args", [
    ["quota", "set", "Bad.Name", "10"],
    ["quota", "set", "acme", "0"],
    ["quota", "increase", "acme", "0"],
])
def test_invalid_input_exit_code(cli, config, args):
    """Bad tenant names and non-positive amounts are rejected without writing."""
    result = runner.invoke(app, args)

    assert result.exit_code == EXIT_INVALID
    assert not quota_file(config).exists()


def test_decrease_below_usage_is_blocked(cli, config, tenant_dirs, sized_file):
    """The shortfall is reported and the quota stays unchanged."""
    sized_file(tenant_dirs["uploads"] / "big.bin", 50 * MIB)

    result = runner.invoke(app, ["quota", "decrease", "acme", "60"])

    assert result.exit_code == EXIT_UNSAFE
    assert "QUOTA DECREASE BLOCKED" in result.output
    assert "free at least 10MB" in result.output
    assert not quota_file(config).exists()


def test_decrease_low_headroom_declined(cli, config, tenant_dirs, sized_file):
    sized_file(tenant_dirs["uploads"] / "big.bin", 50 * MIB)

    result = runner.invoke(app, ["quota", "decrease", "acme", "45"], input="n\n")

    assert result.exit_code == EXIT_UNCONFIRMED
    assert "cancelled" in result.output
    assert not quota_file(config).exists()


def test_decrease_low_headroom_confirmed(cli, config, tenant_dirs, sized_file):
    sized_file(tenant_dirs["uploads"] / "big.bin", 50 * MIB)

    result = runner.invoke(app, ["quota", "decrease", "acme", "45"], input="y\n")

    assert result.exit_code == 0, result.output
    assert "100MB -> 55MB" in result.output
    assert "Headroom: 5MB (9% free space)" in result.output
    assert quota_file(config).read_text().strip() == str(55 * MIB)


def test_decrease_with_yes_skips_prompt(cli, config, tenant_dirs, sized_file):
    sized_file(tenant_dirs["uploads"] / "big.bin", 50 * MIB)

    result = runner.invoke(app, ["quota", "decrease", "acme", "45", "--yes"])

    assert result.exit_code == 0, result.output
    assert "Are you sure" not in result.output


def test_show_reports_breakdown_without_side_effects(cli, config, tenant_dirs, sized_file, notifier):
    sized_file(tenant_dirs["uploads"] / "a.bin", 85 * MIB)
    sized_file(tenant_dirs["published"] / "b.bin", 3 * MIB)
    sized_file(tenant_dirs["vcs"] / "c.pack", 40 * MIB)

    result = runner.invoke(app, ["quota", "show", "acme"])

    assert result.exit_code == 0, result.output
    assert "WARNING" in result.output
    assert "88MB (88%)" in result.output
    assert "Uploads:     85MB" in result.output
    assert "not counted" in result.output
    assert notifier.messages == []
    assert not (config.paths.state_dir / "acme.state").exists()


def test_check_runs_a_pass(cli, config, tenant_dirs, sized_file, notifier):
    """A check over quota alerts, enforces, records and exits non-zero."""
    sized_file(tenant_dirs["uploads"] / "a.bin", 120 * MIB)

    result = runner.invoke(app, ["quota", "check", "acme"])

    assert result.exit_code == EXIT_ERROR
    assert "OVER QUOTA" in result.output
    assert "over" in notifier.kinds()
    assert "enforced" in notifier.kinds()
    assert stat.S_IMODE(os.stat(tenant_dirs["uploads"]).st_mode) == 0o555
    assert (config.paths.state_dir / "acme.state").exists()
    os.chmod(tenant_dirs["uploads"], 0o755)


def test_check_all_summary(cli, tenant_dirs, sized_file):
    sized_file(tenant_dirs["uploads"] / "a.bin", 92 * MIB)

    result = runner.invoke(app, ["quota", "check-all"])

    assert result.exit_code == 0, result.output
    assert "acme" in result.output
    assert "Total: 1  OK: 0  WARNING: 0  CRITICAL: 1  OVER: 0" in result.output


def test_enforce_and_unenforce(cli, tenant_dirs, notifier):
    result = runner.invoke(app, ["quota", "enforce", "acme"])
    assert result.exit_code == 0, result.output
    assert "enforcement enforced" in result.output
    assert (tenant_dirs["uploads"] / "QUOTA_EXCEEDED.txt").exists()

    result = runner.invoke(app, ["quota", "unenforce", "acme"])
    assert result.exit_code == 0, result.output
    assert "enforcement active" in result.output
    assert not (tenant_dirs["uploads"] / "QUOTA_EXCEEDED.txt").exists()
    assert notifier.kinds() == ["enforced", "restored"]


def test_status_reads_recorded_snapshots(cli, tenant_dirs):
    result = runner.invoke(app, ["quota", "status"])
    assert result.exit_code == 0
    assert "No recorded snapshots" in result.output

    result = runner.invoke(app, ["quota", "status", "acme"])
    assert result.exit_code == EXIT_ERROR

    runner.invoke(app, ["quota", "check", "acme"])
    result = runner.invoke(app, ["quota", "status", "acme"])
    assert result.exit_code == 0, result.output
    assert "Tenant Quota Status: acme" in result.output


def test_cleanup(cli):
    result = runner.invoke(app, ["quota", "cleanup", "--days", "3"])

    assert result.exit_code == 0, result.output
    assert "Removed 0 alert record(s)" in result.output


def test_configuration_error_exit_code():
    with patch("cdn_quota_monitor.cli.build_manager", side_effect=ConfigurationError("bad")):
        result = runner.invoke(app, ["quota", "show", "acme"])

    assert result.exit_code == EXIT_ERROR
    assert "invalid configuration" in result.output


def test_monitor_rejects_bad_tenant():
    result = runner.invoke(app, ["monitor", "Not/A/Tenant"])

    assert result.exit_code == EXIT_ERROR
