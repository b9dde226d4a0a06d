"""Domain types shared by the accounting, alerting and enforcement layers."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import ValidationError

TENANT_NAME_PATTERN = re.compile(r"^[a-z0-9_-]+$")

MIB = 1024 * 1024


def validate_tenant_name(name: str) -> str:
    """Return ``name`` unchanged or raise ValidationError."""
    if not isinstance(name, str) or not TENANT_NAME_PATTERN.match(name):
        raise ValidationError(f"Invalid tenant name: {name!r}")
    return name


def validate_megabytes(value: Any, what: str = "Quota") -> int:
    """Accept only positive integers (no bools, no floats, no numeric strings)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{what} must be a positive integer (MB), got {value!r}")
    if value < 1:
        raise ValidationError(f"{what} must be at least 1MB, got {value}")
    return value


def bytes_to_mb(value: int) -> int:
    return value // MIB


class QuotaLevel(Enum):
    """Classification of a usage ratio."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    OVER = "over"


class EnforcementState(Enum):
    """Persisted enforcement state; permission bits are its projection."""
    ACTIVE = "active"
    ENFORCED = "enforced"


class AlertKind(Enum):
    """Alert kinds, each with its own cooldown."""
    WARNING = "warning"
    CRITICAL = "critical"
    OVER = "over"
    ENFORCED = "enforced"
    RESTORED = "restored"

    @classmethod
    def for_level(cls, level: QuotaLevel) -> Optional["AlertKind"]:
        return {
            QuotaLevel.WARNING: cls.WARNING,
            QuotaLevel.CRITICAL: cls.CRITICAL,
            QuotaLevel.OVER: cls.OVER,
        }.get(level)


@dataclass(frozen=True)
class Tenant:
    """A tenant as laid out by the provisioning layer."""

    name: str
    uploads_path: Path
    published_path: Path

    def __post_init__(self):
        validate_tenant_name(self.name)


@dataclass
class UsageBreakdown:
    """Billable usage split by tree."""

    uploads_bytes: int = 0
    published_bytes: int = 0

    @property
    def total_bytes(self) -> int:
        return self.uploads_bytes + self.published_bytes


@dataclass
class UsageSnapshot:
    """Last known usage for a tenant; overwritten on every pass."""

    tenant: str
    usage_bytes: int
    quota_bytes: int
    usage_pct: int
    level: QuotaLevel
    enforcement_state: EnforcementState = EnforcementState.ACTIVE
    uploads_bytes: int = 0
    published_bytes: int = 0
    last_check: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def used_mb(self) -> int:
        return bytes_to_mb(self.usage_bytes)

    @property
    def quota_mb(self) -> int:
        return bytes_to_mb(self.quota_bytes)

    @property
    def free_mb(self) -> int:
        return self.quota_mb - self.used_mb

    def to_record(self) -> Dict[str, str]:
        """Flat KEY=VALUE record as read by the status surface."""
        return {
            "TENANT": self.tenant,
            "USAGE_BYTES": str(self.usage_bytes),
            "QUOTA_BYTES": str(self.quota_bytes),
            "USAGE_PCT": str(self.usage_pct),
            "USED_MB": str(self.used_mb),
            "QUOTA_MB": str(self.quota_mb),
            "LEVEL": self.level.value,
            "ENFORCEMENT": self.enforcement_state.value,
            "UPLOADS_BYTES": str(self.uploads_bytes),
            "PUBLISHED_BYTES": str(self.published_bytes),
            "LAST_CHECK": str(int(self.last_check.timestamp())),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Optional[str]]) -> "UsageSnapshot":
        return cls(
            tenant=record["TENANT"],
            usage_bytes=int(record["USAGE_BYTES"]),
            quota_bytes=int(record["QUOTA_BYTES"]),
            usage_pct=int(record["USAGE_PCT"]),
            level=QuotaLevel(record.get("LEVEL") or "ok"),
            enforcement_state=EnforcementState(record.get("ENFORCEMENT") or "active"),
            uploads_bytes=int(record.get("UPLOADS_BYTES") or 0),
            published_bytes=int(record.get("PUBLISHED_BYTES") or 0),
            last_check=datetime.fromtimestamp(int(record["LAST_CHECK"]), tz=timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant": self.tenant,
            "usage_bytes": self.usage_bytes,
            "quota_bytes": self.quota_bytes,
            "usage_pct": self.usage_pct,
            "used_mb": self.used_mb,
            "quota_mb": self.quota_mb,
            "level": self.level.value,
            "enforcement_state": self.enforcement_state.value,
            "uploads_bytes": self.uploads_bytes,
            "published_bytes": self.published_bytes,
            "last_check": self.last_check.isoformat(),
        }
