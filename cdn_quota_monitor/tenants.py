"""Tenant lookup against the directory layout written by provisioning."""

import logging
from pathlib import Path
from typing import List, Optional

from .config import PathsConfig
from .models import TENANT_NAME_PATTERN, Tenant, validate_tenant_name
from .utils.flatfile import read_record

logger = logging.getLogger(__name__)


def read_contact_email(tenants_dir: Path, name: str) -> Optional[str]:
    """Contact address from ``{tenants_dir}/{name}.env``.

    The provisioning flow stores the git identity there; it doubles as the
    tenant's contact address.
    """
    record = read_record(Path(tenants_dir) / f"{name}.env")
    if not record:
        return None
    return record.get("CONTACT_EMAIL") or record.get("GIT_USER_EMAIL") or None


def resolve_tenant(paths: PathsConfig, name: str) -> Tenant:
    validate_tenant_name(name)
    return Tenant(
        name=name,
        uploads_path=paths.uploads_path(name),
        published_path=paths.published_path(name),
    )


def list_tenants(paths: PathsConfig) -> List[str]:
    """Tenant names found under the uploads root, sorted."""
    root = paths.uploads_root
    if not root.is_dir():
        logger.warning(f"Uploads root not found: {root}")
        return []
    return sorted(
        entry.name for entry in root.iterdir()
        if entry.is_dir() and TENANT_NAME_PATTERN.match(entry.name)
    )
