"""
Persistent consumer markers.

A marker records, per channel, the last consumed position in the log
together with the first-line hash of the segment it points into. The hash
lets a consumer detect that its segment was replaced or recreated, which
the file name alone cannot show.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Set

from eventbus.core.log.format import Position, format_timestamp, parse_timestamp
from eventbus.core.log.log import MARKERS_DIR_NAME, SegmentStore
from eventbus.errors import CorruptMarkerError, NotFoundError, StaleMarkerError
from eventbus.utils.files import write_atomic
from eventbus.utils.logging import get_logger

logger = get_logger(__name__)

MARKER_SUFFIX = ".json"

_UNSAFE_CHARACTERS = re.compile(r'[/\\:*?"<>|\s\x00-\x1f\x7f]')


def sanitize_channel(channel: str) -> str:
    """
    Convert a channel name into a safe file name stem.

    Path separators, reserved characters, whitespace and control
    characters become ``_``. Names that would be empty or refer to the
    current or parent directory are prefixed so they cannot traverse.

    Args:
        channel: Channel name

    Returns:
        File name stem
    """
    safe = _UNSAFE_CHARACTERS.sub("_", channel)
    if safe in ("", ".", ".."):
        safe = f"_{safe}"
    return safe


@dataclass
class Marker:
    """
    A channel's persisted consumer position.

    Attributes:
        file: Segment the position refers to
        first_line_hash: That segment's first-line hash at mark time
        offset: Decompressed byte offset at a line end
        updated_at: When the marker was saved (aware, UTC)
        channel: Channel name the marker belongs to
    """

    file: str
    first_line_hash: str
    offset: int
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    channel: str = ""

    @property
    def position(self) -> Position:
        """The marked position."""
        return Position(file=self.file, offset=self.offset)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "file": self.file,
            "first_line_hash": self.first_line_hash,
            "offset": self.offset,
            "updated_at": format_timestamp(self.updated_at),
            "channel": self.channel,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Marker":
        """
        Create from dictionary.

        Raises:
            ValueError: If a field is missing or invalid
        """
        try:
            return cls(
                file=str(data["file"]),
                first_line_hash=str(data.get("first_line_hash") or ""),
                offset=int(data["offset"]),
                updated_at=parse_timestamp(str(data["updated_at"])),
                channel=str(data.get("channel") or ""),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid marker: {e}") from e


class MarkerStore:
    """
    Stores one marker file per channel under ``<dir>/markers/``.

    Writes fully overwrite the previous marker (last writer wins).
    """

    def __init__(self, directory: Path, segments: SegmentStore):
        """
        Initialize the marker store.

        Args:
            directory: Log directory
            segments: Segment store used to validate markers
        """
        self.directory = Path(directory)
        self.markers_dir = self.directory / MARKERS_DIR_NAME
        self.segments = segments

    def marker_path(self, channel: str) -> Path:
        """Path of the marker file for a channel."""
        return self.markers_dir / f"{sanitize_channel(channel)}{MARKER_SUFFIX}"

    def load(self, channel: str) -> Marker:
        """
        Load a channel's marker.

        Args:
            channel: Channel name

        Returns:
            The saved marker

        Raises:
            NotFoundError: If no marker was ever saved for the channel
            CorruptMarkerError: If the marker file cannot be parsed
        """
        path = self.marker_path(channel)

        try:
            with open(path, "rb") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise NotFoundError(f"No marker for channel {channel!r}") from e
        except ValueError as e:
            raise CorruptMarkerError(f"Failed to parse marker {path}: {e}") from e

        try:
            marker = Marker.from_dict(data)
        except ValueError as e:
            raise CorruptMarkerError(f"Failed to parse marker {path}: {e}") from e

        if not marker.channel:
            marker.channel = channel

        return marker

    def save(self, channel: str, marker: Marker) -> None:
        """
        Save a channel's marker, replacing any previous one.

        Args:
            channel: Channel name
            marker: Marker to save
        """
        self.markers_dir.mkdir(parents=True, exist_ok=True)

        marker.channel = channel
        data = json.dumps(marker.to_dict(), indent=2).encode("utf-8")
        write_atomic(self.marker_path(channel), data)

        logger.info(
            "Saved marker",
            channel=channel,
            file=marker.file,
            offset=marker.offset,
        )

    def list_channels(self) -> Set[str]:
        """
        List channels that have a saved marker.

        Returns:
            Channel names
        """
        try:
            paths = [p for p in self.markers_dir.iterdir() if p.is_file()]
        except FileNotFoundError:
            return set()

        channels = set()
        for path in paths:
            if path.suffix != MARKER_SUFFIX:
                continue

            try:
                with open(path, "rb") as f:
                    data = json.load(f)
                name = data.get("channel") if isinstance(data, dict) else None
            except (OSError, ValueError) as e:
                logger.warning("Unreadable marker file", path=str(path), error=str(e))
                name = None

            channels.add(name or path.stem)

        return channels

    def validate(self, marker: Marker) -> None:
        """
        Check that a marker still refers to the segment it was taken on.

        A marker taken on an empty segment has an empty hash; it stays
        valid as long as it points at offset 0.

        Args:
            marker: Marker to check

        Raises:
            NotFoundError: If the segment no longer exists
            StaleMarkerError: If the segment's first-line hash changed
        """
        status = self.segments.status(marker.file)

        if not marker.first_line_hash and marker.offset == 0:
            return

        if status.first_line_hash != marker.first_line_hash:
            logger.warning(
                "Stale marker",
                channel=marker.channel,
                file=marker.file,
                expected_hash=marker.first_line_hash,
                actual_hash=status.first_line_hash,
            )
            raise StaleMarkerError(
                f"Marker for channel {marker.channel!r} refers to {marker.file} "
                f"with hash {marker.first_line_hash!r}, segment now has "
                f"{status.first_line_hash!r}"
            )
