"""Consumer position tracking."""

from eventbus.consumer.marker import Marker, MarkerStore, sanitize_channel

__all__ = [
    "Marker",
    "MarkerStore",
    "sanitize_channel",
]
