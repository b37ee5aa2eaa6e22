"""
Core log storage implementation.

This package provides compressed, append-only log segments with:
- Line-oriented JSON event records
- Automatic segment rotation
- Offset-scoped sequential reads
- Cross-process locking
"""

from eventbus.core.log.format import (
    Event,
    EventEntry,
    Position,
    decode_event,
    encode_event,
    generate_event_id,
    hash_line,
)
from eventbus.core.log.lock import ProcessMutex
from eventbus.core.log.log import FileStatus, SegmentStore
from eventbus.core.log.segment import LogSegment, SegmentMetadata

__all__ = [
    "Event",
    "EventEntry",
    "Position",
    "decode_event",
    "encode_event",
    "generate_event_id",
    "hash_line",
    "ProcessMutex",
    "FileStatus",
    "SegmentStore",
    "LogSegment",
    "SegmentMetadata",
]
