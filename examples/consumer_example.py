#!/usr/bin/env python3
"""
Consumer example: poll a channel and mark progress after each batch.
"""

import argparse
import json
import time
from pathlib import Path

from eventbus import EventBus


def main():
    parser = argparse.ArgumentParser(description='eventbus consumer example')
    parser.add_argument('--dir', default='./events', help='Event storage directory')
    parser.add_argument('--channel', default='example-reader', help='Consumer channel')
    parser.add_argument('--batch', type=int, default=10, help='Events per batch')
    args = parser.parse_args()
    
    print(f"Consuming channel '{args.channel}' from {args.dir}")
    print("Press Ctrl+C to stop...\n")
    
    bus = EventBus(Path(args.dir))
    bus.init()
    
    consumed = 0
    
    try:
        while True:
            entries = bus.list(args.channel, limit=args.batch)
            
            if not entries:
                time.sleep(1.0)
                continue
            
            for entry in entries:
                payload = json.dumps(entry.event.payload)
                print(f"[{entry.position}] {entry.event.type} {payload}")
                consumed += 1
            
            # Consumed up to here; the next list starts after the last entry
            bus.mark(args.channel, entries[-1].position)
    
    except KeyboardInterrupt:
        print(f"\n\nConsumed {consumed} events total")


if __name__ == '__main__':
    main()
