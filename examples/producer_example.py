#!/usr/bin/env python3
"""
Producer example: publish a stream of events to a log directory.

Run several producers and consumers against the same --dir to see them
coordinate through the filesystem.
"""

import argparse
import time
from pathlib import Path

from eventbus import EventBus


def main():
    parser = argparse.ArgumentParser(description='eventbus producer example')
    parser.add_argument('--dir', default='./events', help='Event storage directory')
    parser.add_argument('--channel', default='inbox', help='Channel to publish under')
    parser.add_argument('--count', type=int, default=20, help='Number of events')
    parser.add_argument('--interval', type=float, default=0.1, help='Seconds between events')
    args = parser.parse_args()
    
    bus = EventBus(Path(args.dir))
    bus.init()
    
    for i in range(args.count):
        event = bus.add(
            'email.received',
            args.channel,
            {'seq': i, 'from': f'sender-{i}@example.com'},
        )
        print(f"  Published {event.id} ({event.type})")
        time.sleep(args.interval)
    
    status = bus.status()
    print(f"\nLatest segment {status.name}: {status.line_count} events, "
          f"{status.uncompressed_size} bytes uncompressed")


if __name__ == '__main__':
    main()
