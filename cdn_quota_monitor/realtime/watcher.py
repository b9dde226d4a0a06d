"""Filesystem change subscriptions for a tenant's watched trees."""

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence

from watchfiles import Change, DefaultFilter, awatch

from ..exceptions import ConfigurationError, ToolingUnavailableError
from .scheduler import PassScheduler

logger = logging.getLogger(__name__)

INOTIFY_EVENTS = "create,delete,modify,move"

_CHANGE_NAMES = {
    Change.added: "create",
    Change.modified: "modify",
    Change.deleted: "delete",
}


@dataclass(frozen=True)
class FileEvent:
    """One create/modify/delete/move notification."""

    change: str
    path: str


class ExcludedDirsFilter(DefaultFilter):
    """watchfiles filter that also drops anything below the excluded directories."""

    def __init__(self, excluded_dirs: Sequence[str]):
        super().__init__(ignore_dirs=tuple(DefaultFilter.ignore_dirs) + tuple(excluded_dirs))


class EventSource:
    """Base class for change-notification backends."""

    name = "base"

    def __init__(self, directories: Sequence[Path], excluded_dirs: Sequence[str] = (".git",)):
        self.directories = [Path(d) for d in directories]
        self.excluded_dirs = list(excluded_dirs)

    def events(self) -> AsyncIterator[FileEvent]:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class WatchfilesEventSource(EventSource):
    """Recursive watch via watchfiles (inotify on Linux)."""

    name = "watchfiles"

    def __init__(self, directories: Sequence[Path], excluded_dirs: Sequence[str] = (".git",)):
        super().__init__(directories, excluded_dirs)
        self._stop = asyncio.Event()

    async def events(self) -> AsyncIterator[FileEvent]:
        watch_filter = ExcludedDirsFilter(self.excluded_dirs)
        async for changes in awatch(
            *self.directories,
            watch_filter=watch_filter,
            stop_event=self._stop,
            recursive=True,
        ):
            for change, path in changes:
                yield FileEvent(_CHANGE_NAMES.get(change, change.name), path)

    async def close(self) -> None:
        self._stop.set()


class InotifywaitEventSource(EventSource):
    """Recursive watch through an ``inotifywait -m -r`` subprocess."""

    name = "inotifywait"

    def __init__(self, directories: Sequence[Path], excluded_dirs: Sequence[str] = (".git",),
                 binary: str = "inotifywait"):
        super().__init__(directories, excluded_dirs)
        resolved = shutil.which(binary)
        if resolved is None:
            raise ToolingUnavailableError(f"{binary} not found. Install the inotify-tools package.")
        self.binary = resolved
        self._process: Optional[asyncio.subprocess.Process] = None

    def command(self) -> List[str]:
        cmd = [self.binary, "-m", "-r", "-q", "-e", INOTIFY_EVENTS, "--format", "%e %w%f"]
        if self.excluded_dirs:
            names = "|".join(re.escape(name) for name in self.excluded_dirs)
            cmd += ["--exclude", f"(^|/)({names})(/|$)"]
        return cmd + [str(d) for d in self.directories]

    @staticmethod
    def parse_line(line: str) -> Optional[FileEvent]:
        line = line.strip()
        if not line:
            return None
        change, _, path = line.partition(" ")
        return FileEvent(change.lower(), path)

    async def events(self) -> AsyncIterator[FileEvent]:
        self._process = await asyncio.create_subprocess_exec(
            *self.command(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        logger.info(f"inotifywait started (PID: {self._process.pid})")
        assert self._process.stdout is not None
        while True:
            raw = await self._process.stdout.readline()
            if not raw:
                break
            event = self.parse_line(raw.decode("utf-8", errors="replace"))
            if event is not None:
                yield event
        returncode = await self._process.wait()
        if returncode not in (0, -15):
            logger.error(f"inotifywait exited with status {returncode}")

    async def close(self) -> None:
        if self._process is not None and self._process.returncode is None:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self._process.kill()


def watchable_directories(directories: Sequence[Path]) -> List[Path]:
    existing = []
    for directory in directories:
        if Path(directory).is_dir():
            existing.append(Path(directory))
        else:
            logger.warning(f"Watched directory not found: {directory}")
    return existing


def create_event_source(backend: str, directories: Sequence[Path],
                        excluded_dirs: Sequence[str] = (".git",)) -> EventSource:
    """Build the configured backend over the directories that exist.

    Raises ConfigurationError when nothing can be watched and
    ToolingUnavailableError when the backend cannot run.
    """
    existing = watchable_directories(directories)
    if not existing:
        raise ConfigurationError("No directories to monitor")
    if backend == "watchfiles":
        return WatchfilesEventSource(existing, excluded_dirs)
    if backend == "inotifywait":
        return InotifywaitEventSource(existing, excluded_dirs)
    raise ConfigurationError(f"Unknown watch backend: {backend}")


class TenantWatcher:
    """Feeds events from a source into the pass scheduler."""

    def __init__(self, source: EventSource, scheduler: PassScheduler):
        self.source = source
        self.scheduler = scheduler
        self.events_seen = 0

    async def run(self):
        for directory in self.source.directories:
            logger.info(f"Watching {directory} ({self.source.name})")
        async for event in self.source.events():
            self.events_seen += 1
            logger.debug(f"File event: {event.change} on {event.path}")
            self.scheduler.notify_event()
        logger.info(f"Event stream for {self.scheduler.tenant} ended after {self.events_seen} event(s)")

    async def stop(self):
        await self.source.close()
