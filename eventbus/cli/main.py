#!/usr/bin/env python3
"""
Command line front end for the event bus.

Usage:
    eventbus add --type email.received --channel inbox --payload '{"from": "a@b.com"}'
    eventbus ls --channel reader
    eventbus mark --channel reader events.000001.jsonl.gz:2048
    eventbus status
    eventbus channels
"""

import argparse
import json
import sys
from typing import List, Optional

from eventbus.bus import EventBus
from eventbus.core.log.format import Position, format_timestamp
from eventbus.errors import EventBusError, NotFoundError
from eventbus.utils.config import Config
from eventbus.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

PAYLOAD_PREVIEW_LENGTH = 60


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="eventbus",
        description="File-based event bus",
    )

    parser.add_argument(
        "--dir",
        type=str,
        default=None,
        help="Event storage directory (default: ~/.emx-mail/events)",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML configuration file",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Publish an event")
    add.add_argument("--type", "-t", required=True, help="Event type")
    add.add_argument("--channel", "-c", required=True, help="Event channel")
    add.add_argument("--payload", "-p", default=None, help="JSON payload (default: null)")

    ls = subparsers.add_parser("ls", aliases=["list"], help="List new events for a channel")
    ls.add_argument("--channel", "-c", required=True, help="Consumer channel")
    ls.add_argument("--limit", "-n", type=int, default=0, help="Maximum number of results")

    mark = subparsers.add_parser("mark", help="Update a channel's consumption position")
    mark.add_argument("--channel", "-c", required=True, help="Consumer channel")
    mark.add_argument("position", help="Position in file:offset form")

    status = subparsers.add_parser("status", help="Show segment status")
    status.add_argument("name", nargs="?", default="", help="Segment name (default: latest)")

    subparsers.add_parser("channels", help="List channels with a saved marker")

    return parser


def format_size(size: int) -> str:
    """
    Render a byte count for humans.

    Args:
        size: Size in bytes

    Returns:
        String such as ``1.5 KB``
    """
    kb = 1024
    mb = 1024 * kb

    if size >= mb:
        return f"{size / mb:.1f} MB"
    if size >= kb:
        return f"{size / kb:.1f} KB"
    return f"{size} B"


def cmd_add(bus: EventBus, args: argparse.Namespace) -> None:
    """Publish an event."""
    payload = None
    if args.payload is not None:
        try:
            payload = json.loads(args.payload)
        except ValueError as e:
            raise ValueError(f"Invalid JSON payload: {args.payload}") from e

    event = bus.add(args.type, args.channel, payload)

    print("Event published:")
    print(f"  ID:        {event.id}")
    print(f"  Time:      {format_timestamp(event.timestamp)}")
    print(f"  Type:      {event.type}")
    print(f"  Channel:   {event.channel}")
    print(f"  Payload:   {json.dumps(event.payload, ensure_ascii=False)}")


def cmd_list(bus: EventBus, args: argparse.Namespace) -> None:
    """List new events for a channel."""
    entries = bus.list(args.channel, args.limit)

    if not entries:
        print("no new events")
        return

    rows = [("#", "Time", "Type", "Channel", "Payload", "Position")]
    for i, entry in enumerate(entries, start=1):
        payload = json.dumps(entry.event.payload, ensure_ascii=False)
        if len(payload) > PAYLOAD_PREVIEW_LENGTH:
            payload = payload[:PAYLOAD_PREVIEW_LENGTH - 3] + "..."
        rows.append((
            str(i),
            entry.event.timestamp.strftime("%H:%M:%S"),
            entry.event.type,
            entry.event.channel,
            payload,
            str(entry.position),
        ))

    widths = [max(len(row[col]) for row in rows) for col in range(len(rows[0]))]
    for row in rows:
        print("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())

    last = entries[-1].position
    print()
    print(f"Latest position: {last}")
    print(f"Use 'eventbus mark --channel {args.channel} {last}' to update consumption position")


def cmd_mark(bus: EventBus, args: argparse.Namespace) -> None:
    """Update a channel's consumption position."""
    position = Position.parse(args.position)
    bus.mark(args.channel, position)
    print(f"Marker updated: {args.channel} -> {position}")


def cmd_status(bus: EventBus, args: argparse.Namespace) -> None:
    """Show segment status, channel markers and the segment list."""
    status = bus.status(args.name)

    print(f"File:         {status.name}{' (latest)' if status.is_latest else ''}")
    print(f"Compressed:   {format_size(status.compressed_size)}")
    print(f"Uncompressed: {format_size(status.uncompressed_size)}")
    print(f"Lines:        {status.line_count}")
    if status.first_line_hash:
        print(f"First hash:   {status.first_line_hash}")

    channels = sorted(bus.list_channels())
    if channels:
        print()
        print("Channel markers:")
        for channel in channels:
            try:
                marker = bus.load_marker(channel)
            except EventBusError as e:
                logger.warning("Skipping marker", channel=channel, error=str(e))
                continue
            print(
                f"  {channel}  {marker.file}  {marker.offset}  "
                f"{marker.updated_at.strftime('%m-%d %H:%M:%S')}"
            )

    files = bus.list_files()
    if len(files) > 1:
        print()
        print(f"All files ({len(files)}):")
        for name in files:
            suffix = " <- latest" if name == status.name and status.is_latest else ""
            print(f"  {name}{suffix}")


def cmd_channels(bus: EventBus, args: argparse.Namespace) -> None:
    """List channels with a saved marker."""
    for channel in sorted(bus.list_channels()):
        print(channel)


COMMANDS = {
    "add": cmd_add,
    "ls": cmd_list,
    "list": cmd_list,
    "mark": cmd_mark,
    "status": cmd_status,
    "channels": cmd_channels,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Arguments (default: ``sys.argv[1:]``)

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    try:
        config = Config(args.config)
        if args.dir:
            config.set("bus.dir", args.dir)
        if args.log_level:
            config.set("logging.level", args.log_level)

        configure_logging(
            log_level=config.get("logging.level", "WARNING"),
            log_format=config.get("logging.format", "console"),
            log_output=config.get("logging.output", "stderr"),
        )

        bus = EventBus.from_config(config)
        COMMANDS[args.command](bus, args)

    except NotFoundError as e:
        print(f"Error: not found: {e}", file=sys.stderr)
        return 1

    except (EventBusError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
