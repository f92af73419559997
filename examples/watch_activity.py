#!/usr/bin/env python3
"""
Example: Watch a relay's activity feed from another process.

Usage:
    uv run examples/watch_activity.py                       # Default feed URL
    uv run examples/watch_activity.py ws://127.0.0.1:8765/ws
    uv run examples/watch_activity.py ws://127.0.0.1:8765/ws --binary

Environment:
    CONDUIT_FEED_URL: Feed URL if not given on the command line
"""

import asyncio
import sys

from conduit_sdk import (
    ActivityFeedClient,
    ConduitEvent,
    FeedError,
    FrameError,
    SnapshotFormatError,
)
from conduit_sdk.relay import EVENT_ACTIVITY_STATS, EVENT_PROXY_ERROR, EVENT_PROXY_STATE

SPARK = " ▁▂▃▄▅▆▇█"


def sparkline(values, width: int = 60) -> str:
    """Render the newest `width` buckets as a one-line chart."""
    values = list(values)[-width:]
    peak = max(values) or 1
    return "".join(SPARK[round(v / peak * (len(SPARK) - 1))] for v in values)


def on_event(client: ActivityFeedClient, event: ConduitEvent):
    """Called for each new event from the relay."""
    if event.type == EVENT_PROXY_STATE:
        state = event.data
        print(f"\n=== Relay {state.status} (network: {state.network_state or 'unknown'}) ===")

    elif event.type == EVENT_PROXY_ERROR:
        print(f"\n!!! Relay error: {event.data.action}")

    elif event.type == EVENT_ACTIVITY_STATS:
        snap = event.data
        fast = snap.series(1000)
        print(f"elapsed={snap.elapsed_time / 1000:.0f}s  "
              f"up={snap.total_bytes_up:,}B  down={snap.total_bytes_down:,}B  "
              f"connecting={snap.current_connecting_clients}  connected={snap.current_connected_clients}")
        if fast is not None:
            print(f"  down/s |{sparkline(fast.bytes_down)}|")


async def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    binary = "--binary" in sys.argv[1:]
    url = args[0] if args else None

    client = ActivityFeedClient(url=url, binary=binary, on_event=on_event)
    print(f"Feed: {client.feed_url}")

    try:
        await client.run()
    except (FrameError, SnapshotFormatError) as e:
        print(f"Protocol mismatch with relay: {e}")
        sys.exit(1)
    except FeedError as e:
        print(f"Feed error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nStopped")
