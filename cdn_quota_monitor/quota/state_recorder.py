"""Last-known usage snapshot per tenant, for status queries."""

import logging
from pathlib import Path
from typing import List, Optional

from ..models import UsageSnapshot
from ..utils.flatfile import read_record, write_record

logger = logging.getLogger(__name__)


class StateRecorder:
    """Writes ``{state_dir}/{tenant}.state``; last write wins."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    def _path(self, tenant: str) -> Path:
        return self.state_dir / f"{tenant}.state"

    def record(self, snapshot: UsageSnapshot) -> bool:
        """Best-effort write; failures are logged and reported as False."""
        try:
            write_record(self._path(snapshot.tenant), snapshot.to_record())
            return True
        except OSError as e:
            logger.warning(f"Could not record snapshot for {snapshot.tenant}: {e}")
            return False

    def _load(self, path: Path) -> Optional[UsageSnapshot]:
        record = read_record(path)
        if not record:
            return None
        try:
            return UsageSnapshot.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed snapshot {path}: {e}")
            return None

    def get(self, tenant: str) -> Optional[UsageSnapshot]:
        return self._load(self._path(tenant))

    def get_all(self) -> List[UsageSnapshot]:
        if not self.state_dir.is_dir():
            return []
        snapshots = []
        for path in sorted(self.state_dir.glob("*.state")):
            snapshot = self._load(path)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots
