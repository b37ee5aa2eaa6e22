#!/usr/bin/env python3
"""
Simple demo of the event bus.

Publishes a few events, reads them on two independent channels and shows
how each channel's marker tracks its own progress.
"""

import tempfile
from pathlib import Path

from eventbus import EventBus


def main():
    print("=" * 60)
    print("eventbus - Simple Producer/Consumer Demo")
    print("=" * 60)
    
    with tempfile.TemporaryDirectory() as tmpdir:
        bus = EventBus(Path(tmpdir) / "events")
        bus.init()
        
        print("\n[1] Publishing 5 events...")
        for i in range(5):
            event = bus.add("email.received", "inbox", {"seq": i})
            print(f"  Published {event.id}")
        
        print("\n[2] Channel 'a' reads two events and marks them...")
        entries = bus.list("a", limit=2)
        for entry in entries:
            print(f"  {entry.position}  {entry.event.payload}")
        bus.mark("a", entries[-1].position)
        
        print("\n[3] Channel 'b' reads everything...")
        entries = bus.list("b")
        print(f"  {len(entries)} events, last at {entries[-1].position}")
        bus.mark("b", entries[-1].position)
        
        print("\n[4] Remaining per channel:")
        for channel in sorted(bus.list_channels()):
            print(f"  {channel}: {len(bus.list(channel))} unread")
        
        status = bus.status()
        print(f"\nLatest segment {status.name}: {status.line_count} lines, "
              f"{status.compressed_size} bytes on disk")


if __name__ == '__main__':
    main()
