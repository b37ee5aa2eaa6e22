"""
Error taxonomy for the event bus.

Filesystem failures are not wrapped: they propagate as the built-in
``OSError`` family and are fatal to the operation in progress.
"""


class EventBusError(Exception):
    """Base class for all event bus errors."""
    pass


class LockTimeoutError(EventBusError):
    """Raised when the process mutex could not be acquired within its budget."""
    pass


class NotFoundError(EventBusError):
    """Raised when a segment, marker or channel does not exist."""
    pass


class StaleMarkerError(EventBusError):
    """Raised when a marker's segment hash no longer matches the segment on disk."""
    pass


class MalformedRecordError(EventBusError):
    """Raised when a single event line cannot be decoded."""
    pass


class CorruptMarkerError(EventBusError):
    """Raised when a marker file exists but cannot be parsed."""
    pass


__all__ = [
    "EventBusError",
    "LockTimeoutError",
    "NotFoundError",
    "StaleMarkerError",
    "MalformedRecordError",
    "CorruptMarkerError",
]
