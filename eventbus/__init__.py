"""
eventbus - A file-based event bus.

Events are appended to a compressed, rotating log on the local filesystem
and consumed through independently positioned channel markers. Producers
and consumers in separate processes coordinate only through the log
directory:
- Append-only gzip segments with size-based rotation
- Per-channel consumer markers validated against segment identity
- Cross-process mutual exclusion through an advisory lock file
"""

__version__ = "0.1.0"

from eventbus.bus import EventBus
from eventbus.consumer.marker import Marker
from eventbus.core.log.format import Event, EventEntry, Position
from eventbus.core.log.log import FileStatus
from eventbus.errors import (
    CorruptMarkerError,
    EventBusError,
    LockTimeoutError,
    MalformedRecordError,
    NotFoundError,
    StaleMarkerError,
)

__all__ = [
    "EventBus",
    "Event",
    "EventEntry",
    "Position",
    "FileStatus",
    "Marker",
    "EventBusError",
    "LockTimeoutError",
    "NotFoundError",
    "StaleMarkerError",
    "MalformedRecordError",
    "CorruptMarkerError",
]
