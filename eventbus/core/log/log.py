"""
Segment store managing the set of segments with automatic rotation.

The store owns the segment files, the ``latest`` pointer naming the one
segment open for append, and the per-segment metadata sidecars. All
mutations happen under the cross-process mutex.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from eventbus.core.log.format import Event, EventEntry, Position, encode_event
from eventbus.core.log.lock import ProcessMutex
from eventbus.core.log.segment import LogSegment, parse_sequence
from eventbus.errors import NotFoundError
from eventbus.utils.files import write_atomic
from eventbus.utils.logging import get_logger

logger = get_logger(__name__)

MAX_SEGMENT_SIZE = 64 * 1024 * 1024
ROTATION_HEADROOM = 64 * 1024

LATEST_FILE_NAME = "latest"
MARKERS_DIR_NAME = "markers"


@dataclass(frozen=True)
class FileStatus:
    """
    Status of a single segment.

    Attributes:
        name: Segment file name
        compressed_size: Physical size on disk in bytes
        uncompressed_size: Size of the decompressed stream in bytes
        line_count: Number of event lines
        first_line_hash: Hash of the first line, empty if none
        is_latest: Whether this segment is open for append
    """

    name: str
    compressed_size: int
    uncompressed_size: int
    line_count: int
    first_line_hash: str
    is_latest: bool

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)


class SegmentStore:
    """
    Manages the segments of one log directory.

    A segment is open while the ``latest`` pointer names it and sealed
    forever once a newer segment replaces it. Rotation happens when the
    next line would bring the latest segment within ``rotation_headroom``
    of ``max_segment_size`` (both measured on the decompressed stream).

    Read helpers do not lock; callers needing a consistent view across
    several reads hold ``mutex`` themselves.

    Attributes:
        directory: Log directory
        max_segment_size: Maximum uncompressed bytes per segment
        rotation_headroom: Reserved bytes when deciding to rotate
        mutex: Cross-process mutex for the directory
    """

    def __init__(
        self,
        directory: Path,
        max_segment_size: int = MAX_SEGMENT_SIZE,
        rotation_headroom: int = ROTATION_HEADROOM,
        mutex: Optional[ProcessMutex] = None,
        fsync_on_append: bool = False,
    ):
        """
        Initialize a segment store.

        Args:
            directory: Log directory
            max_segment_size: Maximum uncompressed segment size in bytes
            rotation_headroom: Headroom reserved below the maximum
            mutex: Mutex to use (default: one on ``directory``)
            fsync_on_append: Whether to fsync segment and metadata writes

        Raises:
            ValueError: If the size limits are invalid
        """
        if max_segment_size <= 0:
            raise ValueError(f"Max segment size must be positive, got {max_segment_size}")
        if rotation_headroom < 0:
            raise ValueError(f"Rotation headroom must be non-negative, got {rotation_headroom}")

        self.directory = Path(directory)
        self.max_segment_size = max_segment_size
        self.rotation_headroom = rotation_headroom
        self.fsync_on_append = fsync_on_append
        self.mutex = mutex or ProcessMutex(self.directory)

        self.latest_path = self.directory / LATEST_FILE_NAME
        self.markers_dir = self.directory / MARKERS_DIR_NAME

    def init(self) -> None:
        """
        Ensure the directory layout and a latest segment exist.

        Idempotent.
        """
        with self.mutex.hold():
            segment = self._ensure_initialized()

        logger.debug("Initialized segment store", directory=str(self.directory), latest=segment.name)

    def append(self, event: Event) -> Position:
        """
        Append an event to the latest segment, rotating first if needed.

        Args:
            event: Event to append

        Returns:
            Position just past the appended event

        Raises:
            LockTimeoutError: If the mutex could not be acquired
            TypeError: If the payload is not JSON serializable
            IOError: If the write fails
        """
        line = encode_event(event)
        record_size = len(line) + 1

        with self.mutex.hold():
            segment = self._ensure_initialized()
            metadata = segment.read_metadata()

            if self._should_rotate(metadata.uncompressed_size, record_size):
                segment = self._rotate(segment)

            metadata = segment.append_line(line)

        logger.debug(
            "Appended event",
            event_id=event.id,
            type=event.type,
            channel=event.channel,
            segment=segment.name,
            offset=metadata.uncompressed_size,
        )

        return Position(file=segment.name, offset=metadata.uncompressed_size)

    def read_from(self, name: str, offset: int = 0) -> List[EventEntry]:
        """
        Read events of one segment starting at an offset.

        Args:
            name: Segment file name
            offset: Decompressed byte offset to start from

        Returns:
            Entries in log order with their ending offsets

        Raises:
            NotFoundError: If the segment does not exist
            ValueError: If offset is negative
        """
        segment = self.segment(name)

        try:
            events = segment.read_from(offset)
        except FileNotFoundError as e:
            raise NotFoundError(f"Segment {name} does not exist") from e

        return [EventEntry(event=event, file=name, offset=end) for event, end in events]

    def list_files(self) -> List[str]:
        """
        List segment names in ascending sequence order.

        Returns:
            Segment file names
        """
        return [LogSegment(self.directory, seq).name for seq in self._sequences()]

    def latest_name(self) -> str:
        """
        Get the name of the segment open for append.

        Raises:
            NotFoundError: If no latest segment is recorded
        """
        name = self._read_latest()
        if name is None:
            raise NotFoundError(f"No latest segment recorded in {self.directory}")
        return name

    def status(self, name: str = "") -> FileStatus:
        """
        Get the status of a segment.

        Args:
            name: Segment file name, or empty for the latest segment

        Returns:
            Segment status

        Raises:
            NotFoundError: If the segment does not exist
        """
        if not name:
            name = self.latest_name()

        segment = self.segment(name)

        try:
            metadata = segment.read_metadata()
            compressed_size = segment.compressed_size()
        except FileNotFoundError as e:
            raise NotFoundError(f"Segment {name} does not exist") from e

        return FileStatus(
            name=name,
            compressed_size=compressed_size,
            uncompressed_size=metadata.uncompressed_size,
            line_count=metadata.line_count,
            first_line_hash=metadata.first_line_hash,
            is_latest=name == self._read_latest(),
        )

    def segment(self, name: str) -> LogSegment:
        """
        Get a handle on an existing segment.

        Args:
            name: Segment file name

        Raises:
            NotFoundError: If the name is not a canonical segment name or the
                file is missing
        """
        sequence = parse_sequence(name)
        if sequence is None:
            raise NotFoundError(f"Not a segment name: {name!r}")

        segment = LogSegment(self.directory, sequence, fsync_on_append=self.fsync_on_append)
        if segment.name != name or not segment.exists():
            raise NotFoundError(f"Segment {name} does not exist")

        return segment

    def _should_rotate(self, current_size: int, record_size: int) -> bool:
        """Check whether appending ``record_size`` bytes requires rotation."""
        if current_size + record_size + self.rotation_headroom < self.max_segment_size:
            return False

        if current_size == 0:
            # A fresh segment takes the record even if it alone is oversized.
            logger.warning(
                "Event exceeds segment size budget",
                record_size=record_size,
                max_segment_size=self.max_segment_size,
            )
            return False

        logger.info(
            "Rotation triggered by size",
            size=current_size,
            record_size=record_size,
            max_size=self.max_segment_size,
        )
        return True

    def _ensure_initialized(self) -> LogSegment:
        """
        Make sure a valid latest segment exists. Caller holds the mutex.

        Returns:
            The latest segment
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        self.markers_dir.mkdir(exist_ok=True)

        latest = self._read_latest()
        latest_sequence = parse_sequence(latest) if latest else None

        if latest_sequence is not None:
            segment = LogSegment(
                self.directory, latest_sequence, fsync_on_append=self.fsync_on_append
            )
            if segment.exists():
                return segment

        sequences = self._sequences()

        if latest is None and sequences:
            segment = LogSegment(self.directory, sequences[-1], fsync_on_append=self.fsync_on_append)
            logger.warning("Latest pointer missing, using highest segment", latest=segment.name)
        else:
            if latest is not None:
                logger.warning("Latest pointer names a missing segment", latest=latest)
            next_sequence = max([latest_sequence or 0] + sequences) + 1
            segment = LogSegment(self.directory, next_sequence, fsync_on_append=self.fsync_on_append)
            segment.create()

        self._set_latest(segment.name)
        return segment

    def _rotate(self, current: LogSegment) -> LogSegment:
        """
        Seal the current segment by creating its successor. Caller holds the mutex.

        Args:
            current: The latest segment

        Returns:
            The new latest segment
        """
        next_sequence = max([current.sequence] + self._sequences()) + 1

        segment = LogSegment(self.directory, next_sequence, fsync_on_append=self.fsync_on_append)
        segment.create()
        self._set_latest(segment.name)

        logger.info("Rotated segment", sealed=current.name, latest=segment.name)

        return segment

    def _sequences(self) -> List[int]:
        """Sequence numbers of all segments on disk, ascending."""
        try:
            names = [p.name for p in self.directory.iterdir() if p.is_file()]
        except FileNotFoundError:
            return []

        sequences = [seq for seq in map(parse_sequence, names) if seq is not None]
        return sorted(sequences)

    def _read_latest(self) -> Optional[str]:
        """Read the latest pointer, or None if there is none."""
        try:
            name = self.latest_path.read_text().strip()
        except FileNotFoundError:
            return None
        return name or None

    def _set_latest(self, name: str) -> None:
        """Atomically repoint the latest pointer."""
        write_atomic(self.latest_path, f"{name}\n".encode(), fsync=self.fsync_on_append)
        logger.debug("Updated latest pointer", latest=name)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"SegmentStore(directory={str(self.directory)!r}, "
            f"max_segment_size={self.max_segment_size})"
        )
