"""Authoritative per-tenant quota limits with safe-decrease rules."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..exceptions import ConfirmationRequiredError, SafetyCheckViolation
from ..models import MIB, bytes_to_mb, validate_megabytes, validate_tenant_name
from ..monitoring.alerts import CooldownCache
from ..monitoring.structured_logging import AuditLogger, get_audit_logger
from ..utils.flatfile import read_int, write_int

logger = logging.getLogger(__name__)

MIN_HEADROOM_PCT = 10


@dataclass
class QuotaChange:
    """Outcome of a successful quota change."""

    tenant: str
    action: str
    old_mb: int
    new_mb: int
    usage_mb: Optional[int] = None
    headroom_mb: Optional[int] = None
    headroom_pct: Optional[int] = None


class QuotaRegistry:
    """Stores quota limits as ``{quota_dir}/{tenant}.quota`` (bytes).

    Every successful change clears the tenant's pending alert cooldowns so the
    next threshold crossing under the new limit is reported.
    """

    def __init__(self, quota_dir: Path, default_quota_mb: int = 100,
                 usage_bytes_fn: Optional[Callable[[str], int]] = None,
                 cooldown_caches: Sequence[CooldownCache] = (),
                 audit: Optional[AuditLogger] = None):
        self.quota_dir = Path(quota_dir)
        self.default_quota_bytes = default_quota_mb * MIB
        self.usage_bytes_fn = usage_bytes_fn
        self.cooldown_caches: List[CooldownCache] = list(cooldown_caches)
        self.audit = audit or get_audit_logger()

    def _path(self, tenant: str) -> Path:
        return self.quota_dir / f"{tenant}.quota"

    def get(self, tenant: str) -> int:
        """Quota in bytes; the default when no usable record exists."""
        validate_tenant_name(tenant)
        path = self._path(tenant)
        value = read_int(path)
        if value is None:
            if path.exists():
                logger.warning(f"Unreadable quota record {path}, using default")
            return self.default_quota_bytes
        if value <= 0:
            logger.warning(f"Non-positive quota in {path}, using default")
            return self.default_quota_bytes
        return value

    def get_mb(self, tenant: str) -> int:
        return bytes_to_mb(self.get(tenant))

    def _store(self, tenant: str, new_mb: int) -> None:
        write_int(self._path(tenant), new_mb * MIB)
        cleared = 0
        for cache in self.cooldown_caches:
            cleared += cache.clear_tenant(tenant)
        if cleared:
            logger.debug(f"Cleared {cleared} alert cooldown record(s) for {tenant}")

    def set(self, tenant: str, quota_mb: int, actor: str = "admin") -> QuotaChange:
        validate_tenant_name(tenant)
        validate_megabytes(quota_mb, "Quota")
        old_mb = self.get_mb(tenant)
        self._store(tenant, quota_mb)
        self.audit.log_quota_change(tenant, "set", old_mb, quota_mb, actor)
        logger.info(f"Quota for {tenant} set to {quota_mb}MB (was {old_mb}MB)")
        return QuotaChange(tenant=tenant, action="set", old_mb=old_mb, new_mb=quota_mb)

    def increase(self, tenant: str, delta_mb: int, actor: str = "admin") -> QuotaChange:
        validate_tenant_name(tenant)
        validate_megabytes(delta_mb, "Increase amount")
        old_mb = self.get_mb(tenant)
        new_mb = old_mb + delta_mb
        self._store(tenant, new_mb)
        self.audit.log_quota_change(tenant, "increase", old_mb, new_mb, actor)
        logger.info(f"Quota for {tenant} increased {old_mb}MB -> {new_mb}MB (+{delta_mb}MB)")
        return QuotaChange(tenant=tenant, action="increase", old_mb=old_mb, new_mb=new_mb)

    def decrease(self, tenant: str, delta_mb: int, confirm: bool = False,
                 actor: str = "admin") -> QuotaChange:
        """Lower the quota, refusing any value that would strand existing data.

        Raises SafetyCheckViolation when the result is below 1MB or below
        current usage, and ConfirmationRequiredError when it would leave less
        than 10% headroom and ``confirm`` is False. Nothing is written in
        either case.
        """
        validate_tenant_name(tenant)
        validate_megabytes(delta_mb, "Decrease amount")
        old_mb = self.get_mb(tenant)
        proposed_mb = old_mb - delta_mb

        if proposed_mb < 1:
            self.audit.log_quota_rejected(tenant, "decrease", "below_minimum")
            raise SafetyCheckViolation(
                f"Cannot decrease quota below 1MB (would result in {proposed_mb}MB)",
                tenant=tenant, current_usage_mb=0,
                current_quota_mb=old_mb, proposed_quota_mb=proposed_mb,
            )

        # Compared in bytes: a partial megabyte over the new limit still counts.
        usage_bytes = self.usage_bytes_fn(tenant) if self.usage_bytes_fn else 0
        usage_mb = bytes_to_mb(usage_bytes)
        proposed_bytes = proposed_mb * MIB
        if proposed_bytes < usage_bytes:
            self.audit.log_quota_rejected(tenant, "decrease", "below_usage")
            raise SafetyCheckViolation(
                f"Proposed quota {proposed_mb}MB is less than current usage "
                f"{usage_bytes} bytes ({usage_mb}MB)",
                tenant=tenant, current_usage_mb=usage_mb,
                current_quota_mb=old_mb, proposed_quota_mb=proposed_mb,
                current_usage_bytes=usage_bytes,
            )

        headroom_bytes = proposed_bytes - usage_bytes
        headroom_mb = bytes_to_mb(headroom_bytes)
        headroom_pct = headroom_bytes * 100 // proposed_bytes
        if headroom_pct < MIN_HEADROOM_PCT and not confirm:
            self.audit.log_quota_rejected(tenant, "decrease", "confirmation_required")
            raise ConfirmationRequiredError(
                f"Only {headroom_mb}MB ({headroom_pct}%) headroom would remain for {tenant}",
                tenant=tenant, proposed_quota_mb=proposed_mb,
                headroom_mb=headroom_mb, headroom_pct=headroom_pct,
            )

        self._store(tenant, proposed_mb)
        self.audit.log_quota_change(tenant, "decrease", old_mb, proposed_mb, actor)
        logger.info(
            f"Quota for {tenant} decreased {old_mb}MB -> {proposed_mb}MB "
            f"(headroom {headroom_mb}MB, {headroom_pct}%)"
        )
        return QuotaChange(
            tenant=tenant, action="decrease", old_mb=old_mb, new_mb=proposed_mb,
            usage_mb=usage_mb, headroom_mb=headroom_mb, headroom_pct=headroom_pct,
        )
