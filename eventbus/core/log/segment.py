"""
Log segment implementation for compressed, append-only event storage.

A segment is a single gzip file holding a contiguous run of event lines,
plus a JSON metadata sidecar. Each append writes one independent gzip
member, so earlier content never has to be recompressed; readers decode
the concatenated members as one logical byte stream.
"""

import gzip
import json
import os
import re
import zlib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from eventbus.core.log.format import Event, decode_event, hash_line
from eventbus.errors import MalformedRecordError
from eventbus.utils.files import write_atomic
from eventbus.utils.logging import get_logger

logger = get_logger(__name__)

SEGMENT_PREFIX = "events."
SEGMENT_SUFFIX = ".jsonl.gz"
METADATA_SUFFIX = ".meta.json"
SEQUENCE_PADDING = 6

# Compressed bytes fed to the decoder at a time; bounds the copy made at
# each member boundary.
DECOMPRESS_WINDOW = 4096

_SEGMENT_NAME_PATTERN = re.compile(r"^events\.(\d+)\.jsonl\.gz$")


def segment_name(sequence: int) -> str:
    """
    Build the file name for a segment.

    Args:
        sequence: Segment sequence number

    Returns:
        File name such as ``events.000001.jsonl.gz``
    """
    return f"{SEGMENT_PREFIX}{str(sequence).zfill(SEQUENCE_PADDING)}{SEGMENT_SUFFIX}"


def parse_sequence(name: str) -> Optional[int]:
    """
    Extract the sequence number from a segment file name.

    Args:
        name: Candidate file name

    Returns:
        Sequence number, or None if the name is not a segment name
    """
    match = _SEGMENT_NAME_PATTERN.match(name)
    if match is None:
        return None
    return int(match.group(1))


@dataclass
class SegmentMetadata:
    """
    Sidecar record describing a segment's contents.

    Attributes:
        uncompressed_size: Length of the decompressed stream in bytes
        line_count: Number of non-blank lines
        first_line_hash: Hash of the first line, empty if there is none
        compressed_size: End of the last complete gzip member when the
            sidecar was written (the physical size unless a partial
            member trails it)
    """

    uncompressed_size: int = 0
    line_count: int = 0
    first_line_hash: str = ""
    compressed_size: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SegmentMetadata":
        """
        Create from dictionary.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        try:
            metadata = cls(
                uncompressed_size=int(data["uncompressed_size"]),
                line_count=int(data["line_count"]),
                first_line_hash=str(data.get("first_line_hash") or ""),
                compressed_size=int(data.get("compressed_size", -1)),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid segment metadata: {e}") from e

        if metadata.uncompressed_size < 0 or metadata.line_count < 0:
            raise ValueError(f"Invalid segment metadata: {data}")

        return metadata


class LogSegment:
    """
    A single compressed segment file and its metadata sidecar.

    The segment does not lock anything itself; callers serialize
    mutations through the process mutex.

    Attributes:
        sequence: Segment sequence number
        name: Segment file name
        path: Path to the segment file
        metadata_path: Path to the metadata sidecar
    """

    def __init__(
        self,
        directory: Path,
        sequence: int,
        fsync_on_append: bool = False,
    ):
        """
        Initialize a segment handle.

        Args:
            directory: Directory holding the segment
            sequence: Segment sequence number
            fsync_on_append: Whether to fsync after each append

        Raises:
            ValueError: If sequence is not positive
        """
        if sequence < 1:
            raise ValueError(f"Sequence must be positive, got {sequence}")

        self.directory = Path(directory)
        self.sequence = sequence
        self.fsync_on_append = fsync_on_append

        self.name = segment_name(sequence)
        self.path = self.directory / self.name
        self.metadata_path = self.directory / (
            f"{SEGMENT_PREFIX}{str(sequence).zfill(SEQUENCE_PADDING)}{METADATA_SUFFIX}"
        )

    def exists(self) -> bool:
        """Check whether the segment file exists."""
        return self.path.is_file()

    def create(self) -> SegmentMetadata:
        """
        Create an empty segment with fresh metadata.

        Returns:
            The new (empty) metadata

        Raises:
            FileExistsError: If the segment already exists
        """
        with open(self.path, "xb"):
            pass

        metadata = SegmentMetadata()
        self.write_metadata(metadata)

        logger.info("Created segment", segment=self.name, path=str(self.path))

        return metadata

    def compressed_size(self) -> int:
        """Physical size of the segment file in bytes."""
        return self.path.stat().st_size

    def write_metadata(self, metadata: SegmentMetadata) -> None:
        """Atomically replace the metadata sidecar."""
        data = json.dumps(metadata.to_dict(), indent=2).encode("utf-8")
        write_atomic(self.metadata_path, data, fsync=self.fsync_on_append)

    def read_metadata(self) -> SegmentMetadata:
        """
        Load segment metadata.

        When the sidecar is missing, unreadable, or was written for a
        different physical size (a crash between the chunk write and the
        sidecar update), metadata is rebuilt by scanning the segment.

        Returns:
            Metadata matching the segment on disk

        Raises:
            FileNotFoundError: If the segment file does not exist
        """
        actual_size = self.compressed_size()

        try:
            with open(self.metadata_path, "rb") as f:
                metadata = SegmentMetadata.from_dict(json.load(f))
        except FileNotFoundError:
            reason = "missing"
        except ValueError as e:
            reason = f"unreadable: {e}"
        else:
            if metadata.compressed_size == actual_size:
                return metadata
            reason = (
                f"size mismatch: recorded {metadata.compressed_size}, actual {actual_size}"
            )

        logger.warning("Rebuilding segment metadata", segment=self.name, reason=reason)
        return self.scan_metadata()

    def scan_metadata(self) -> SegmentMetadata:
        """
        Recompute metadata from the segment contents.

        ``compressed_size`` is set to the end of the last complete member,
        so a partially written tail shows up as a size mismatch until the
        next append cuts it off.

        Returns:
            Freshly computed metadata
        """
        data, compressed_size = self._decompress()

        line_count = 0
        first_line_hash = ""
        for line in data.split(b"\n"):
            if not line.strip():
                continue
            if line_count == 0:
                first_line_hash = hash_line(line)
            line_count += 1

        return SegmentMetadata(
            uncompressed_size=len(data),
            line_count=line_count,
            first_line_hash=first_line_hash,
            compressed_size=compressed_size,
        )

    def append_line(self, line: bytes) -> SegmentMetadata:
        """
        Append one encoded event line as an independent gzip member.

        Metadata is only updated after the chunk has been written. If
        anything fails once bytes may have reached the file, the file is
        truncated back to its previous size so no partial record remains.
        A partial member left behind by an interrupted append is cut off
        first, so the new member starts on a member boundary.

        Args:
            line: Encoded event without trailing newline

        Returns:
            Updated metadata

        Raises:
            ValueError: If the line contains a newline
            IOError: If the write fails or is short
        """
        if b"\n" in line:
            raise ValueError("Event line must not contain newlines")

        metadata = self.read_metadata()
        record = line + b"\n"
        chunk = gzip.compress(record, compresslevel=6)

        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND)
        try:
            size_before = os.fstat(fd).st_size

            if metadata.compressed_size < size_before:
                logger.warning(
                    "Truncating incomplete tail before append",
                    segment=self.name,
                    complete_size=metadata.compressed_size,
                    actual_size=size_before,
                )
                os.ftruncate(fd, metadata.compressed_size)
                size_before = metadata.compressed_size
                self.write_metadata(metadata)

            try:
                bytes_written = os.write(fd, chunk)

                if bytes_written != len(chunk):
                    raise IOError(
                        f"Partial write: expected {len(chunk)} bytes, "
                        f"wrote {bytes_written} bytes"
                    )

                if self.fsync_on_append:
                    os.fsync(fd)

                updated = SegmentMetadata(
                    uncompressed_size=metadata.uncompressed_size + len(record),
                    line_count=metadata.line_count + 1,
                    first_line_hash=(
                        metadata.first_line_hash
                        if metadata.line_count > 0
                        else hash_line(line)
                    ),
                    compressed_size=size_before + bytes_written,
                )
                self.write_metadata(updated)
            except BaseException:
                os.ftruncate(fd, size_before)
                raise
        finally:
            os.close(fd)

        logger.debug(
            "Appended line",
            segment=self.name,
            size=len(record),
            compressed=len(chunk),
            line_count=updated.line_count,
            uncompressed_size=updated.uncompressed_size,
        )

        return updated

    def read_from(self, offset: int = 0) -> List[Tuple[Event, int]]:
        """
        Read events starting at a byte offset in the decompressed stream.

        Blank lines are skipped. Lines that fail to decode are skipped too;
        both still advance the running offset. A trailing line without a
        newline is incomplete and is not returned.

        Args:
            offset: Offset to start scanning from (a line boundary)

        Returns:
            List of (event, ending offset) in log order

        Raises:
            ValueError: If offset is negative
            FileNotFoundError: If the segment file does not exist
            gzip.BadGzipFile: If the compressed data is corrupt
        """
        if offset < 0:
            raise ValueError(f"Offset must be non-negative, got {offset}")

        data, _ = self._decompress()
        if offset >= len(data):
            return []

        lines = data[offset:].split(b"\n")
        if lines[-1]:
            logger.warning(
                "Incomplete line at end of segment",
                segment=self.name,
                size=len(lines[-1]),
            )
        lines.pop()

        entries: List[Tuple[Event, int]] = []
        position = offset

        for line in lines:
            position += len(line) + 1

            if not line.strip():
                continue

            try:
                event = decode_event(line)
            except MalformedRecordError as e:
                logger.warning(
                    "Skipping malformed line",
                    segment=self.name,
                    end_offset=position,
                    error=str(e),
                )
                continue

            entries.append((event, position))

        logger.debug(
            "Read segment",
            segment=self.name,
            from_offset=offset,
            entries=len(entries),
        )

        return entries

    def _decompress(self) -> Tuple[bytes, int]:
        """
        Decompress all gzip members of the segment.

        A truncated final member (interrupted append) contributes nothing
        and is logged; corrupt data anywhere else is an error.

        Returns:
            The decompressed logical stream and the byte offset where the
            last complete member ends
        """
        raw = self.path.read_bytes()
        view = memoryview(raw)
        output = bytearray()
        position = 0
        complete = 0

        while position < len(raw):
            if raw[position] == 0 and raw.count(b"\x00", position) == len(raw) - position:
                break

            start = position
            member = bytearray()
            decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)

            while not decompressor.eof and position < len(raw):
                piece = view[position:position + DECOMPRESS_WINDOW]
                try:
                    member.extend(decompressor.decompress(piece))
                except zlib.error as e:
                    raise gzip.BadGzipFile(
                        f"Corrupt gzip member in {self.name} at byte {start}: {e}"
                    ) from e
                position += len(piece) - len(decompressor.unused_data)

            if not decompressor.eof:
                logger.warning(
                    "Truncated gzip member at end of segment",
                    segment=self.name,
                    position=start,
                    bytes=len(raw) - start,
                )
                break

            output.extend(member)
            complete = position

        return bytes(output), complete

    def __repr__(self) -> str:
        """String representation."""
        return f"LogSegment(sequence={self.sequence}, path={str(self.path)!r})"
