"""Billable usage: uploads tree plus published tree, never the vcs tree."""

import asyncio
import logging
import os
import stat
from pathlib import Path

from ..models import Tenant, UsageBreakdown

logger = logging.getLogger(__name__)


def directory_size(path: Path) -> int:
    """Apparent size in bytes of every non-directory entry below ``path``.

    Symlinks are counted by their own size and never followed. A missing path
    counts as 0. Entries that vanish or cannot be read mid-scan are skipped.
    """
    path = Path(path)
    try:
        root_stat = path.lstat()
    except FileNotFoundError:
        return 0
    if not stat.S_ISDIR(root_stat.st_mode):
        return root_stat.st_size

    total = 0

    def on_error(error: OSError):
        logger.debug(f"Skipping unreadable entry during scan: {error}")

    for dirpath, dirnames, filenames in os.walk(path, onerror=on_error, followlinks=False):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
        for name in dirnames:
            full = os.path.join(dirpath, name)
            if os.path.islink(full):
                try:
                    total += os.lstat(full).st_size
                except OSError:
                    continue
    return total


class UsageAccountant:
    """Computes a tenant's billable usage."""

    def __init__(self, size_fn=directory_size):
        self._size = size_fn

    def _tree_size(self, tenant: Tenant, label: str, path: Path) -> int:
        if not path.is_dir():
            logger.warning(f"{label} directory missing for {tenant.name}: {path} (counted as 0 bytes)")
            return 0
        return self._size(path)

    def measure(self, tenant: Tenant) -> UsageBreakdown:
        # The vcs tree is infrastructure overhead and is not billed.
        return UsageBreakdown(
            uploads_bytes=self._tree_size(tenant, "Uploads", tenant.uploads_path),
            published_bytes=self._tree_size(tenant, "Published", tenant.published_path),
        )

    def usage_bytes(self, tenant: Tenant) -> int:
        return self.measure(tenant).total_bytes

    async def measure_async(self, tenant: Tenant) -> UsageBreakdown:
        return await asyncio.to_thread(self.measure, tenant)
