#!/usr/bin/env python3
"""
Run a relay against a simulated engine and serve its activity feed.

The simulated engine emits one activity tick per second with random traffic,
and occasionally pauses to show how gaps appear in the rolling window.

Usage:
    uv run examples/simulated_relay.py
    uv run examples/simulated_relay.py 8765      # Feed port

Environment:
    CONDUIT_FEED_HOST: Feed bind address (default 127.0.0.1)
"""

import random
import sys
import threading
import time
from typing import Optional

from conduit_sdk import InProxyParameters, RelayStream


class SimulatedEngine:
    """Stand-in for the tunneling engine: one tick per second from its own thread."""

    def __init__(self):
        self.is_internet_reachable: Optional[bool] = True
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    async def start(self, config: dict, listener) -> bool:
        print(f"Engine starting: max_clients={config['InproxyMaxClients']}")
        self._stop.clear()
        self._thread = threading.Thread(target=self._tick_loop, args=(listener,), daemon=True)
        self._thread.start()
        return True

    async def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None

    def _tick_loop(self, listener):
        connected = 0
        while not self._stop.wait(1.0):
            # Simulate the app being suspended now and then
            if random.random() < 0.05 and self._stop.wait(random.uniform(3, 8)):
                break
            connected = max(0, min(10, connected + random.randint(-1, 2)))
            listener.on_inproxy_proxy_activity(
                random.randint(0, 2),
                connected,
                connected * random.randint(1_000, 50_000),
                connected * random.randint(5_000, 200_000),
            )


def main():
    port = int(sys.argv[1]) if len(sys.argv) > 1 else None
    params = InProxyParameters(
        max_clients=10,
        limit_upstream_bytes_per_second=1_000_000,
        limit_downstream_bytes_per_second=1_000_000,
    )

    with RelayStream(SimulatedEngine(), serve_feed=True, feed_port=port) as relay:
        print(f"Feed: {relay.feed_url}")
        relay.toggle(params)
        relay.wait_until_running()

        try:
            while True:
                time.sleep(5)
                snap = relay.latest_snapshot()
                if snap is None:
                    continue
                up, down = relay.total_bytes()
                stats = relay.get_stats()
                print(f"elapsed={snap.elapsed_time / 1000:.0f}s  up={up:,}B  down={down:,}B  "
                      f"clients={snap.current_connected_clients}  "
                      f"feed clients={stats['feed']['clients']}")
                print(f"tick interval: {stats['tick_interval']}")
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
