"""
File-based event bus.

Producers ``add`` events to an append-only, compressed, rotating log;
consumers ``list`` the events after their channel's marker and ``mark``
how far they got. Processes coordinate only through the log directory.

Directory layout::

    <dir>/
      events.000001.jsonl.gz      sealed or latest segment
      events.000001.meta.json     segment metadata sidecar
      latest                      name of the segment open for append
      events.lock                 cross-process lock file
      markers/<channel>.json      per-channel consumer marker
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Set

from eventbus.consumer.marker import Marker, MarkerStore
from eventbus.core.log.format import Event, EventEntry, Position, generate_event_id
from eventbus.core.log.lock import ProcessMutex
from eventbus.core.log.log import (
    MAX_SEGMENT_SIZE,
    ROTATION_HEADROOM,
    FileStatus,
    SegmentStore,
)
from eventbus.errors import NotFoundError
from eventbus.utils.config import Config
from eventbus.utils.logging import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Event bus over one log directory.

    Every operation that touches the log runs under the directory's
    process mutex, so readers never observe a half-finished append or
    rotation.

    Attributes:
        directory: Log directory
        segments: Segment store
        markers: Marker store
    """

    def __init__(
        self,
        directory: Path,
        max_segment_size: int = MAX_SEGMENT_SIZE,
        rotation_headroom: int = ROTATION_HEADROOM,
        lock_attempts: int = 50,
        lock_retry_interval: float = 0.1,
        fsync_on_append: bool = False,
    ):
        """
        Initialize an event bus.

        Args:
            directory: Log directory
            max_segment_size: Maximum uncompressed segment size in bytes
            rotation_headroom: Headroom reserved below the maximum
            lock_attempts: Lock attempts before giving up
            lock_retry_interval: Seconds between lock attempts
            fsync_on_append: Whether to fsync every write
        """
        self.directory = Path(directory).expanduser()
        self.mutex = ProcessMutex(
            self.directory,
            attempts=lock_attempts,
            retry_interval=lock_retry_interval,
        )
        self.segments = SegmentStore(
            self.directory,
            max_segment_size=max_segment_size,
            rotation_headroom=rotation_headroom,
            mutex=self.mutex,
            fsync_on_append=fsync_on_append,
        )
        self.markers = MarkerStore(self.directory, self.segments)

    @classmethod
    def from_config(cls, config: Config) -> "EventBus":
        """
        Create a bus from configuration.

        Args:
            config: Loaded configuration

        Returns:
            Configured event bus
        """
        return cls(
            directory=config.bus_dir(),
            max_segment_size=int(config.get("segment.max_size", MAX_SEGMENT_SIZE)),
            rotation_headroom=int(config.get("segment.rotation_headroom", ROTATION_HEADROOM)),
            lock_attempts=int(config.get("lock.attempts", 50)),
            lock_retry_interval=int(config.get("lock.retry_interval_ms", 100)) / 1000.0,
            fsync_on_append=bool(config.get("segment.fsync", False)),
        )

    def init(self) -> None:
        """Create the directory layout and the first segment. Idempotent."""
        self.segments.init()

    def add(self, type: str, channel: str, payload: Any = None) -> Event:
        """
        Publish an event.

        The append either completes or leaves no trace.

        Args:
            type: Event type tag
            channel: Channel the event is published under
            payload: Any JSON value

        Returns:
            The stored event

        Raises:
            ValueError: If type is empty
            TypeError: If the payload is not JSON serializable
            LockTimeoutError: If the mutex could not be acquired
        """
        if not type:
            raise ValueError("Event type must not be empty")

        event = Event(
            id=generate_event_id(),
            timestamp=datetime.now(timezone.utc),
            type=type,
            channel=channel,
            payload=payload,
        )

        position = self.segments.append(event)

        logger.info(
            "Published event",
            event_id=event.id,
            type=type,
            channel=channel,
            position=str(position),
        )

        return event

    def list(self, channel: str, limit: int = 0) -> List[EventEntry]:
        """
        List events after a channel's marker.

        Without a marker the scan starts at the first segment. Every
        channel sees every event; ``Event.channel`` is informational.

        Args:
            channel: Consumer channel name
            limit: Maximum number of entries (<= 0 for no limit)

        Returns:
            Entries in log order with their positions

        Raises:
            StaleMarkerError: If the marker's segment was replaced
            NotFoundError: If the marker's segment no longer exists
            LockTimeoutError: If the mutex could not be acquired
        """
        with self.mutex.hold():
            files = self.segments.list_files()
            if not files:
                return []

            marker = self._load_marker_or_none(channel)

            if marker is None:
                start_index, start_offset = 0, 0
            else:
                self.markers.validate(marker)
                start_index = files.index(marker.file)
                start_offset = marker.offset

            entries: List[EventEntry] = []
            for i in range(start_index, len(files)):
                offset = start_offset if i == start_index else 0
                entries.extend(self.segments.read_from(files[i], offset))

                if limit > 0 and len(entries) >= limit:
                    entries = entries[:limit]
                    break

        logger.debug(
            "Listed events",
            channel=channel,
            start=files[start_index],
            entries=len(entries),
        )

        return entries

    def mark(self, channel: str, position: Position) -> Marker:
        """
        Record a channel's consumer position.

        The segment's first-line hash is captured now, so a later ``list``
        can tell whether the segment was replaced in between.

        Args:
            channel: Consumer channel name
            position: Position to record (usually an entry's position)

        Returns:
            The saved marker

        Raises:
            NotFoundError: If the segment does not exist
            ValueError: If the offset lies outside the segment
            LockTimeoutError: If the mutex could not be acquired
        """
        with self.mutex.hold():
            status = self.segments.status(position.file)

            if not 0 <= position.offset <= status.uncompressed_size:
                raise ValueError(
                    f"Offset {position.offset} outside segment {position.file} "
                    f"(size {status.uncompressed_size})"
                )

            marker = Marker(
                file=position.file,
                first_line_hash=status.first_line_hash,
                offset=position.offset,
                updated_at=datetime.now(timezone.utc),
            )
            self.markers.save(channel, marker)

        return marker

    def status(self, name: str = "") -> FileStatus:
        """
        Get the status of a segment.

        Args:
            name: Segment file name, or empty for the latest

        Raises:
            NotFoundError: If the segment does not exist
        """
        with self.mutex.hold():
            return self.segments.status(name)

    def list_files(self) -> List[str]:
        """List segment names in sequence order."""
        with self.mutex.hold():
            return self.segments.list_files()

    def list_channels(self) -> Set[str]:
        """List channels that have a saved marker."""
        return self.markers.list_channels()

    def load_marker(self, channel: str) -> Marker:
        """
        Load a channel's marker.

        Raises:
            NotFoundError: If the channel has no marker
        """
        return self.markers.load(channel)

    def _load_marker_or_none(self, channel: str) -> Optional[Marker]:
        """Load a marker, treating a missing one as "start from the beginning"."""
        try:
            return self.markers.load(channel)
        except NotFoundError:
            return None

    def __repr__(self) -> str:
        """String representation."""
        return f"EventBus(directory={str(self.directory)!r})"
