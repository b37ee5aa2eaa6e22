"""
Event record format for log segments.

This module defines the line-oriented serialized form of an event, the
content hash used for segment identity, and event ID generation.

Line format (one JSON object per line, fixed key order):
    {"id": ..., "timestamp": ..., "type": ..., "channel": ..., "payload": ...}
"""

import hashlib
import json
import re
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from eventbus.errors import MalformedRecordError

HASH_LENGTH = 16

_TIMESTAMP_PATTERN = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)

_id_lock = threading.Lock()
_last_id_time: Optional[datetime] = None


def format_timestamp(value: datetime) -> str:
    """
    Render a timestamp as RFC 3339 UTC with microseconds.

    Args:
        value: Timezone-aware datetime

    Returns:
        String such as ``2026-10-17T09:30:00.000000Z``
    """
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(text: str) -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware UTC datetime.

    Fractional seconds longer than microseconds are truncated.

    Args:
        text: Timestamp string

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValueError: If the string is not RFC 3339
    """
    match = _TIMESTAMP_PATTERN.match(text)
    if match is None:
        raise ValueError(f"Invalid RFC 3339 timestamp: {text!r}")

    date_part, time_part, fraction, zone = match.groups()
    fraction = ((fraction or "") + "000000")[:6]
    if zone in ("Z", "z"):
        zone = "+00:00"

    parsed = datetime.fromisoformat(f"{date_part}T{time_part}.{fraction}{zone}")
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Event:
    """
    An immutable fact stored in the log.

    Attributes:
        id: Time-ordered unique identifier
        timestamp: Creation time (aware, UTC)
        type: Free-form type tag (e.g. ``email.received``)
        channel: Topic the event was published under (informational only)
        payload: Any JSON value, stored verbatim
    """

    id: str
    timestamp: datetime
    type: str
    channel: str
    payload: Any = None

    def __post_init__(self) -> None:
        """Validate and normalize event fields."""
        if not isinstance(self.timestamp, datetime):
            raise TypeError(f"Timestamp must be a datetime, got {type(self.timestamp)}")
        if self.timestamp.tzinfo is None:
            raise ValueError("Timestamp must be timezone-aware")
        object.__setattr__(self, "timestamp", self.timestamp.astimezone(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to a JSON-ready dictionary in canonical key order."""
        return {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "type": self.type,
            "channel": self.channel,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class Position:
    """
    A consumer position inside one segment.

    Attributes:
        file: Segment file name
        offset: Byte offset in the decompressed stream, at a line end
    """

    file: str
    offset: int

    def __str__(self) -> str:
        return f"{self.file}:{self.offset}"

    @classmethod
    def parse(cls, text: str) -> "Position":
        """
        Parse a position from ``file:offset`` form.

        Args:
            text: Position string

        Returns:
            Parsed Position

        Raises:
            ValueError: If the string is not ``file:offset``
        """
        idx = text.rfind(":")
        if idx <= 0 or idx >= len(text) - 1:
            raise ValueError(f"Invalid position {text!r}, expected file:offset")

        try:
            offset = int(text[idx + 1:])
        except ValueError as e:
            raise ValueError(
                f"Invalid position {text!r}, offset is not a number"
            ) from e

        return cls(file=text[:idx], offset=offset)


@dataclass(frozen=True)
class EventEntry:
    """
    An event read back from a segment with its position.

    Attributes:
        event: The decoded event
        file: Segment the event was read from
        offset: Byte offset just past the event's line
    """

    event: Event
    file: str
    offset: int

    @property
    def position(self) -> Position:
        """Position to pass to ``mark`` to consume up to this entry."""
        return Position(file=self.file, offset=self.offset)


def encode_event(event: Event) -> bytes:
    """
    Serialize an event to a single newline-free line.

    Args:
        event: Event to encode

    Returns:
        UTF-8 encoded JSON line without trailing newline

    Raises:
        TypeError: If the payload is not JSON serializable
        ValueError: If the payload contains NaN or infinity
    """
    return json.dumps(
        event.to_dict(),
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    ).encode("utf-8")


def decode_event(line: Union[bytes, str]) -> Event:
    """
    Deserialize an event line.

    Args:
        line: Encoded line (with or without trailing newline)

    Returns:
        Decoded Event

    Raises:
        MalformedRecordError: If the line is not a valid event record
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise MalformedRecordError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedRecordError(
            f"Event record must be an object, got {type(data).__name__}"
        )

    for key in ("id", "timestamp", "type", "channel"):
        if key not in data:
            raise MalformedRecordError(f"Missing field: {key}")
        if not isinstance(data[key], str):
            raise MalformedRecordError(
                f"Field {key} must be a string, got {type(data[key]).__name__}"
            )

    try:
        timestamp = parse_timestamp(data["timestamp"])
    except ValueError as e:
        raise MalformedRecordError(str(e)) from e

    return Event(
        id=data["id"],
        timestamp=timestamp,
        type=data["type"],
        channel=data["channel"],
        payload=data.get("payload"),
    )


def hash_line(data: bytes) -> str:
    """
    Compute the content hash of a line.

    Args:
        data: Line bytes (without trailing newline)

    Returns:
        First 16 hex characters of the SHA-256 digest
    """
    return hashlib.sha256(data).hexdigest()[:HASH_LENGTH]


def generate_event_id(now: Optional[datetime] = None) -> str:
    """
    Generate a time-prefixed, random-suffixed event ID.

    IDs generated by one process are strictly increasing: when the clock
    has not advanced past the previous ID, the time part is bumped by one
    microsecond.

    Args:
        now: Override for the current time

    Returns:
        ID such as ``20261017T093000.000000-1a2b3c4d``
    """
    global _last_id_time

    with _id_lock:
        current = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        if _last_id_time is not None and current <= _last_id_time:
            current = _last_id_time + timedelta(microseconds=1)
        _last_id_time = current

    return f"{current.strftime('%Y%m%dT%H%M%S.%f')}-{secrets.token_hex(4)}"
