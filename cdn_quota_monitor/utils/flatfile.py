"""Flat per-tenant records: single values and KEY=VALUE files.

Writes go through a temporary file in the same directory followed by
``os.replace`` so readers never observe a half-written record.
"""

import fcntl
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

from dotenv import dotenv_values


def atomic_write(path: Path, content: str, mode: int = 0o644) -> None:
    """Replace ``path`` with ``content`` atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def write_record(path: Path, record: Mapping[str, str]) -> None:
    lines = [f"{key}={value}" for key, value in record.items()]
    atomic_write(path, "\n".join(lines) + "\n")


def read_record(path: Path) -> Optional[Dict[str, Optional[str]]]:
    """Read a KEY=VALUE file; ``None`` when it does not exist."""
    if not path.is_file():
        return None
    return dict(dotenv_values(path))


def write_int(path: Path, value: int) -> None:
    atomic_write(path, f"{value}\n")


def read_int(path: Path) -> Optional[int]:
    """Read a file holding a single integer; ``None`` when absent or unparsable."""
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


@contextmanager
def file_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on ``path`` across processes.

    The lock file is separate from the record it guards, since ``atomic_write``
    replaces the record's inode.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
