"""Read-only enforcement of a tenant's upload area.

The persisted state record ``{state_dir}/{tenant}.enforcement`` is the source
of truth. Directory mode and the notice file are applied from it and never
read back to decide the state.
"""

import asyncio
import dataclasses
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, Optional

from ..config import EnforcementConfig
from ..exceptions import EnforcementIOError
from ..models import AlertKind, EnforcementState, Tenant, UsageSnapshot
from ..monitoring.alerts import AlertDispatcher
from ..monitoring.metrics import QuotaMetrics
from ..monitoring.structured_logging import AuditLogger, get_audit_logger
from ..utils.flatfile import atomic_write, file_lock, read_record, write_record

logger = logging.getLogger(__name__)

NOTICE_RULE = "━" * 60

NOTICE_TEXT = f"""{NOTICE_RULE}
                          QUOTA EXCEEDED
{NOTICE_RULE}

Your disk quota has been exceeded.

{{usage_line}}This directory is now READ-ONLY until you:
1. Delete unnecessary files to free up space, OR
2. Contact your administrator to increase your quota

Current actions are restricted:
  x Cannot upload new files
  x Cannot modify existing files
  + Can read and download files

Write access is restored by your administrator once usage is
back under quota.

{NOTICE_RULE}
"""


def render_notice(snapshot: Optional[UsageSnapshot] = None) -> str:
    usage_line = ""
    if snapshot is not None:
        usage_line = (
            f"Usage at the time of enforcement: "
            f"{snapshot.used_mb}MB of {snapshot.quota_mb}MB ({snapshot.usage_pct}%)\n\n"
        )
    return NOTICE_TEXT.format(usage_line=usage_line)


class EnforcementController:
    """Two-state machine: ACTIVE (writable) and ENFORCED (read-only).

    Transitions for one tenant are serialized by a per-tenant asyncio lock and,
    across processes, by an flock on ``{state_dir}/{tenant}.enforcement.lock``. A transition
    applies the filesystem projection first and persists the new state second;
    if either step fails the projection is rolled back, the state is left
    unchanged and EnforcementIOError is raised.
    """

    def __init__(self, config: EnforcementConfig, state_dir: Path,
                 dispatcher: Optional[AlertDispatcher] = None,
                 metrics: Optional[QuotaMetrics] = None,
                 audit: Optional[AuditLogger] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.state_dir = Path(state_dir)
        self.dispatcher = dispatcher
        self.metrics = metrics
        self.audit = audit or get_audit_logger()
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, tenant: str) -> asyncio.Lock:
        if tenant not in self._locks:
            self._locks[tenant] = asyncio.Lock()
        return self._locks[tenant]

    def _state_path(self, tenant: str) -> Path:
        return self.state_dir / f"{tenant}.enforcement"

    def lock_path(self, tenant: str) -> Path:
        return self.state_dir / f"{tenant}.enforcement.lock"

    def notice_path(self, tenant: Tenant) -> Path:
        return tenant.uploads_path / self.config.notice_filename

    # State record

    def get_state(self, tenant: str) -> EnforcementState:
        """Persisted state; ACTIVE when no record exists."""
        path = self._state_path(tenant)
        record = read_record(path)
        if not record:
            return EnforcementState.ACTIVE
        try:
            return EnforcementState(record.get("STATE") or "active")
        except ValueError:
            logger.warning(f"Unknown enforcement state in {path}, treating as active")
            return EnforcementState.ACTIVE

    def _persist(self, tenant: str, state: EnforcementState, usage_pct: int, automatic: bool) -> None:
        write_record(self._state_path(tenant), {
            "TENANT": tenant,
            "STATE": state.value,
            "CHANGED_AT": str(int(self.clock())),
            "USAGE_PCT": str(usage_pct),
            "AUTOMATIC": "true" if automatic else "false",
        })

    # Filesystem projection

    def _apply_readonly(self, tenant: Tenant, snapshot: Optional[UsageSnapshot]) -> None:
        uploads = tenant.uploads_path
        if not uploads.is_dir():
            raise FileNotFoundError(f"Upload directory not found: {uploads}")
        notice = self.notice_path(tenant)
        # The notice must exist before the directory stops accepting writes.
        if not notice.exists():
            if not os.access(uploads, os.W_OK):
                os.chmod(uploads, self.config.writable_mode)
            atomic_write(notice, render_notice(snapshot), mode=0o444)
        try:
            os.chmod(uploads, self.config.readonly_mode)
        except OSError:
            notice.unlink(missing_ok=True)
            raise

    def _apply_writable(self, tenant: Tenant) -> None:
        uploads = tenant.uploads_path
        if not uploads.is_dir():
            raise FileNotFoundError(f"Upload directory not found: {uploads}")
        os.chmod(uploads, self.config.writable_mode)
        self.notice_path(tenant).unlink(missing_ok=True)

    def _project(self, tenant: Tenant, state: EnforcementState,
                 snapshot: Optional[UsageSnapshot] = None) -> None:
        if state is EnforcementState.ENFORCED:
            self._apply_readonly(tenant, snapshot)
        else:
            self._apply_writable(tenant)

    def _transition(self, tenant: Tenant, target: EnforcementState,
                    snapshot: UsageSnapshot, automatic: bool) -> None:
        previous = EnforcementState.ACTIVE if target is EnforcementState.ENFORCED else EnforcementState.ENFORCED
        try:
            self._project(tenant, target, snapshot)
        except OSError as e:
            raise EnforcementIOError(
                f"Failed to apply {target.value} permissions for {tenant.name}: {e}",
                tenant=tenant.name, action=target.value,
            ) from e
        try:
            self._persist(tenant.name, target, snapshot.usage_pct, automatic)
        except OSError as e:
            try:
                self._project(tenant, previous, snapshot)
            except OSError as rollback_error:
                logger.error(f"Rollback of {tenant.name} permissions failed: {rollback_error}")
            raise EnforcementIOError(
                f"Failed to persist enforcement state for {tenant.name}: {e}",
                tenant=tenant.name, action=target.value,
            ) from e

    def _change_locked(self, tenant: Tenant, target: EnforcementState,
                       snapshot: UsageSnapshot, automatic: bool) -> bool:
        # The daemon and administrative commands run in separate processes.
        with file_lock(self.lock_path(tenant.name)):
            if self.get_state(tenant.name) is target:
                # Re-apply the projection in case it drifted, but no alert.
                try:
                    self._project(tenant, target, snapshot)
                except OSError as e:
                    logger.warning(f"Could not re-apply {target.value} projection for {tenant.name}: {e}")
                return False
            self._transition(tenant, target, snapshot, automatic)
            return True

    async def _change(self, tenant: Tenant, target: EnforcementState,
                      snapshot: UsageSnapshot, automatic: bool) -> bool:
        action = "enforce" if target is EnforcementState.ENFORCED else "unenforce"
        async with self._lock(tenant.name):
            try:
                changed = await asyncio.to_thread(
                    self._change_locked, tenant, target, snapshot, automatic
                )
            except OSError as e:
                if self.metrics:
                    self.metrics.enforcement_errors.labels(tenant=tenant.name, action=action).inc()
                raise EnforcementIOError(
                    f"Cannot lock enforcement state for {tenant.name}: {e}",
                    tenant=tenant.name, action=target.value,
                ) from e
            except EnforcementIOError:
                if self.metrics:
                    self.metrics.enforcement_errors.labels(tenant=tenant.name, action=action).inc()
                raise
        if not changed:
            return False

        self.audit.log_enforcement(tenant.name, target.value, snapshot.usage_pct, automatic)
        if target is EnforcementState.ENFORCED:
            logger.warning(f"Quota enforcement: {tenant.name} upload area set to READ-ONLY ({snapshot.usage_pct}%)")
        else:
            logger.info(f"Quota enforcement removed: {tenant.name} upload area restored to READ-WRITE")

        if self.dispatcher:
            kind = AlertKind.ENFORCED if target is EnforcementState.ENFORCED else AlertKind.RESTORED
            await self.dispatcher.send_enforcement_alert(
                dataclasses.replace(snapshot, enforcement_state=target), kind
            )
        return True

    async def enforce(self, tenant: Tenant, snapshot: UsageSnapshot, automatic: bool = True) -> bool:
        """Make the upload area read-only; True when the state changed."""
        return await self._change(tenant, EnforcementState.ENFORCED, snapshot, automatic)

    async def unenforce(self, tenant: Tenant, snapshot: UsageSnapshot, automatic: bool = False) -> bool:
        """Restore write access; True when the state changed."""
        return await self._change(tenant, EnforcementState.ACTIVE, snapshot, automatic)

    def _reconcile_locked(self, tenant: Tenant) -> EnforcementState:
        with file_lock(self.lock_path(tenant.name)):
            state = self.get_state(tenant.name)
            self._project(tenant, state)
            return state

    async def reconcile(self, tenant: Tenant) -> EnforcementState:
        """Re-apply the projection of the persisted state, e.g. at startup."""
        async with self._lock(tenant.name):
            try:
                state = await asyncio.to_thread(self._reconcile_locked, tenant)
            except OSError as e:
                state = self.get_state(tenant.name)
                raise EnforcementIOError(
                    f"Failed to reconcile {tenant.name} with state {state.value}: {e}",
                    tenant=tenant.name, action="reconcile",
                ) from e
            logger.debug(f"Reconciled {tenant.name} permissions with state {state.value}")
            return state
