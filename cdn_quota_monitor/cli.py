import asyncio
from typing import List, Optional

import typer

from . import __version__
from .config import validate_config_file
from .exceptions import (
    ConfigurationError,
    ConfirmationRequiredError,
    EnforcementIOError,
    QuotaMonitorError,
    SafetyCheckViolation,
    ValidationError,
)
from .main import build_manager, run_daemon, setup_logging
from .models import QuotaLevel, UsageSnapshot
from .quota.manager import QuotaManager

app = typer.Typer(add_completion=False, help="CDN tenant quota monitor")
quota_app = typer.Typer(add_completion=False, help="Tenant quota administration")
app.add_typer(quota_app, name="quota")

EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_UNSAFE = 3
EXIT_UNCONFIRMED = 4
EXIT_ENFORCEMENT = 5

RULE = "━" * 60

LEVEL_LABELS = {
    QuotaLevel.OK: "OK",
    QuotaLevel.WARNING: "WARNING",
    QuotaLevel.CRITICAL: "CRITICAL",
    QuotaLevel.OVER: "OVER QUOTA",
}


def _manager() -> QuotaManager:
    try:
        config, manager = build_manager()
    except ConfigurationError as e:
        typer.echo(f"Error: invalid configuration: {e}", err=True)
        raise typer.Exit(EXIT_ERROR)
    setup_logging(config)
    return manager


def _fail(error: QuotaMonitorError) -> None:
    if isinstance(error, SafetyCheckViolation):
        typer.echo(RULE, err=True)
        typer.echo("QUOTA DECREASE BLOCKED", err=True)
        typer.echo(RULE, err=True)
        typer.echo(f"Tenant:           {error.tenant}", err=True)
        typer.echo(f"Current usage:    {error.current_usage_mb}MB", err=True)
        typer.echo(f"Current quota:    {error.current_quota_mb}MB", err=True)
        typer.echo(f"Proposed quota:   {error.proposed_quota_mb}MB", err=True)
        if error.shortfall_mb:
            typer.echo(f"Tenant must free at least {error.shortfall_mb}MB before retrying.", err=True)
        else:
            typer.echo(str(error), err=True)
        raise typer.Exit(EXIT_UNSAFE)
    typer.echo(f"Error: {error}", err=True)
    if isinstance(error, ValidationError):
        raise typer.Exit(EXIT_INVALID)
    if isinstance(error, EnforcementIOError):
        raise typer.Exit(EXIT_ENFORCEMENT)
    raise typer.Exit(EXIT_ERROR)


def _print_snapshot(snapshot: UsageSnapshot, breakdown: bool = False) -> None:
    typer.echo("")
    typer.echo(RULE)
    typer.echo(f"Tenant Quota Status: {snapshot.tenant}")
    typer.echo(RULE)
    typer.echo(f"Status:        {LEVEL_LABELS[snapshot.level]}")
    typer.echo(f"Enforcement:   {snapshot.enforcement_state.value}")
    typer.echo(f"Quota:         {snapshot.quota_mb}MB")
    typer.echo(f"Usage:         {snapshot.used_mb}MB ({snapshot.usage_pct}%)")
    typer.echo(f"Free:          {snapshot.free_mb}MB")
    if breakdown:
        typer.echo("")
        typer.echo("Breakdown:")
        typer.echo(f"  Uploads:     {snapshot.uploads_bytes // (1024 * 1024)}MB")
        typer.echo(f"  Published:   {snapshot.published_bytes // (1024 * 1024)}MB")
        typer.echo("  Git repo:    not counted")
    typer.echo(f"Last check:    {snapshot.last_check.strftime('%Y-%m-%d %H:%M:%S %Z')}")
    typer.echo(RULE)


def _print_table(snapshots: List[UsageSnapshot]) -> None:
    typer.echo(f"{'TENANT':<24} {'USED':>10} {'QUOTA':>10} {'PCT':>5}  {'STATUS':<10} ENFORCEMENT")
    for snapshot in snapshots:
        typer.echo(
            f"{snapshot.tenant:<24} {str(snapshot.used_mb) + 'MB':>10} "
            f"{str(snapshot.quota_mb) + 'MB':>10} {str(snapshot.usage_pct) + '%':>5}  "
            f"{LEVEL_LABELS[snapshot.level]:<10} {snapshot.enforcement_state.value}"
        )


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command()
def monitor(tenant: str = typer.Argument(..., help="Tenant to monitor")) -> None:
    """Run the real-time quota daemon for one tenant."""
    raise typer.Exit(run_daemon(tenant))


@app.command("validate-config")
def validate_config(path: str = typer.Argument(..., help="KEY=VALUE configuration file")) -> None:
    if not validate_config_file(path):
        raise typer.Exit(EXIT_ERROR)
    typer.echo(f"{path} is valid")


@quota_app.command("set")
def set_quota(
    tenant: str = typer.Argument(...),
    mb: int = typer.Argument(..., help="New quota in MB"),
) -> None:
    manager = _manager()
    try:
        change = asyncio.run(manager.set_quota(tenant, mb))
    except QuotaMonitorError as e:
        _fail(e)
    typer.echo(f"Quota for {tenant}: {change.old_mb}MB -> {change.new_mb}MB")


@quota_app.command()
def increase(
    tenant: str = typer.Argument(...),
    mb: int = typer.Argument(..., help="Amount to add in MB"),
) -> None:
    manager = _manager()
    try:
        change = asyncio.run(manager.increase_quota(tenant, mb))
    except QuotaMonitorError as e:
        _fail(e)
    typer.echo(f"Increased quota for {tenant}: {change.old_mb}MB -> {change.new_mb}MB (+{mb}MB)")


@quota_app.command()
def decrease(
    tenant: str = typer.Argument(...),
    mb: int = typer.Argument(..., help="Amount to remove in MB"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Accept a decrease leaving under 10% headroom"),
) -> None:
    """Decrease a quota; refused when the result would be below current usage."""
    manager = _manager()
    try:
        change = asyncio.run(manager.decrease_quota(tenant, mb, confirm=yes))
    except ConfirmationRequiredError as e:
        typer.echo(f"WARNING: only {e.headroom_mb}MB ({e.headroom_pct}%) headroom would remain "
                   f"under the new {e.proposed_quota_mb}MB quota.", err=True)
        if not typer.confirm("Are you sure you want to proceed?"):
            typer.echo("Quota decrease cancelled")
            raise typer.Exit(EXIT_UNCONFIRMED)
        try:
            change = asyncio.run(manager.decrease_quota(tenant, mb, confirm=True))
        except QuotaMonitorError as retry_error:
            _fail(retry_error)
    except QuotaMonitorError as e:
        _fail(e)
    typer.echo(f"Decreased quota for {tenant}: {change.old_mb}MB -> {change.new_mb}MB (-{mb}MB)")
    typer.echo(f"Headroom: {change.headroom_mb}MB ({change.headroom_pct}% free space)")


@quota_app.command()
def show(tenant: str = typer.Argument(...)) -> None:
    """Current usage with breakdown; sends nothing."""
    manager = _manager()
    try:
        snapshot = asyncio.run(manager.show_quota(tenant))
    except QuotaMonitorError as e:
        _fail(e)
    _print_snapshot(snapshot, breakdown=True)


@quota_app.command()
def check(tenant: str = typer.Argument(...)) -> None:
    """Run one accounting pass (alerts and enforcement included)."""
    manager = _manager()
    try:
        snapshot = asyncio.run(manager.check_quota(tenant))
    except QuotaMonitorError as e:
        _fail(e)
    if snapshot is None:
        typer.echo(f"Accounting pass for {tenant} failed; see the log", err=True)
        raise typer.Exit(EXIT_ERROR)
    _print_snapshot(snapshot)
    if snapshot.level is not QuotaLevel.OK:
        raise typer.Exit(EXIT_ERROR)


@quota_app.command("check-all")
def check_all() -> None:
    manager = _manager()
    summary = asyncio.run(manager.check_all())
    _print_table(summary.snapshots)
    typer.echo("")
    typer.echo(
        f"Total: {summary.total}  OK: {summary.counts['ok']}  WARNING: {summary.counts['warning']}  "
        f"CRITICAL: {summary.counts['critical']}  OVER: {summary.counts['over']}"
    )


@quota_app.command()
def enforce(tenant: str = typer.Argument(...)) -> None:
    """Make the tenant's upload area read-only and notify."""
    manager = _manager()
    try:
        snapshot = asyncio.run(manager.enforce(tenant))
    except QuotaMonitorError as e:
        _fail(e)
    typer.echo(f"{tenant}: enforcement {snapshot.enforcement_state.value}")


@quota_app.command()
def unenforce(tenant: str = typer.Argument(...)) -> None:
    """Restore write access and notify."""
    manager = _manager()
    try:
        snapshot = asyncio.run(manager.unenforce(tenant))
    except QuotaMonitorError as e:
        _fail(e)
    typer.echo(f"{tenant}: enforcement {snapshot.enforcement_state.value}")


@quota_app.command()
def status(tenant: Optional[str] = typer.Argument(None)) -> None:
    """Last recorded snapshot(s), as written by the daemons."""
    manager = _manager()
    if tenant is None:
        snapshots = manager.get_snapshot_all()
        if not snapshots:
            typer.echo("No recorded snapshots")
            return
        _print_table(snapshots)
        return
    try:
        snapshot = manager.get_snapshot(tenant)
    except QuotaMonitorError as e:
        _fail(e)
    if snapshot is None:
        typer.echo(f"No recorded snapshot for {tenant}", err=True)
        raise typer.Exit(EXIT_ERROR)
    _print_snapshot(snapshot)


@quota_app.command()
def cleanup(days: int = typer.Option(7, help="Remove alert records older than this many days")) -> None:
    manager = _manager()
    removed = manager.cleanup_old_alerts(days)
    typer.echo(f"Removed {removed} alert record(s)")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
