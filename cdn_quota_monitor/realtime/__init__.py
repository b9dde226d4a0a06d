"""Real-time monitoring: event watcher, fallback scanner and pass scheduling."""

from .daemon import TenantQuotaMonitor
from .scanner import FallbackScanner
from .scheduler import PassGate, PassScheduler
from .watcher import (
    EventSource,
    FileEvent,
    InotifywaitEventSource,
    TenantWatcher,
    WatchfilesEventSource,
    create_event_source,
)

__all__ = [
    "TenantQuotaMonitor",
    "FallbackScanner",
    "PassGate",
    "PassScheduler",
    "EventSource",
    "FileEvent",
    "InotifywaitEventSource",
    "TenantWatcher",
    "WatchfilesEventSource",
    "create_event_source",
]
