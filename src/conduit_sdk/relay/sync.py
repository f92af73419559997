"""
Synchronous wrapper for running a relay.

Runs a ConduitManager (and optionally an ActivityFeedServer) on an event
loop in a background thread, providing thread-safe sync control and
access to live activity stats.

Example:
    >>> from conduit_sdk import InProxyParameters, RelayStream
    >>> params = InProxyParameters(max_clients=10,
    ...                            limit_upstream_bytes_per_second=1_000_000,
    ...                            limit_downstream_bytes_per_second=1_000_000)
    >>> with RelayStream(engine) as relay:
    ...     relay.toggle(params)
    ...     relay.wait_until_running()
    ...     print(relay.total_bytes())
"""

import asyncio
import threading
from typing import Callable, Optional

from ..activity.snapshot import ActivityStatsSnapshot
from ..errors import ConduitError
from .events import EVENT_ACTIVITY_STATS, EVENT_PROXY_STATE, ConduitEvent, ProxyState
from .manager import STATUS_STARTING, STATUS_STOPPED, ConduitManager, TunnelEngine
from .params import InProxyParameters
from .service import ActivityFeedServer


class RelayStream:
    """
    Synchronous relay controller with a background event loop.

    Provides thread-safe access to:
    - status / proxy_state (O(1))
    - latest_snapshot (last emitted ActivityStatsSnapshot, O(1))

    Args:
        engine: TunnelEngine implementation
        on_event: Optional callback for every ConduitEvent.
                  Signature: (stream: RelayStream, event: ConduitEvent) -> None
        serve_feed: Also run an ActivityFeedServer publishing every event
        feed_host: Feed bind address (see ActivityFeedServer)
        feed_port: Feed bind port (see ActivityFeedServer)
        client_version: Reported to the engine (see ConduitManager)
    """

    COMMAND_TIMEOUT = 30

    def __init__(
        self,
        engine: TunnelEngine,
        on_event: Optional[Callable[["RelayStream", ConduitEvent], None]] = None,
        serve_feed: bool = False,
        feed_host: str | None = None,
        feed_port: int | None = None,
        client_version: str | None = None,
    ):
        self._engine = engine
        self._user_callback = on_event
        self._serve_feed = serve_feed
        self._feed_host = feed_host
        self._feed_port = feed_port
        self._client_version = client_version

        # Thread and async state
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._manager: Optional[ConduitManager] = None
        self._server: Optional[ActivityFeedServer] = None

        # Synchronization
        self._lock = threading.RLock()
        self._proxy_state: ProxyState = ProxyState.unknown()
        self._snapshot: Optional[ActivityStatsSnapshot] = None
        self._ready = threading.Event()
        self._running = threading.Event()
        self._stopped = threading.Event()
        self._error: Optional[Exception] = None

    def start(self) -> "RelayStream":
        """Start the background event loop thread. Returns self for chaining."""
        if self._thread is not None:
            raise RuntimeError("Relay stream already started")

        self._stopped.clear()
        self._ready.clear()
        self._running.clear()
        self._error = None

        self._thread = threading.Thread(target=self._run_thread, daemon=True)
        self._thread.start()

        self._ready.wait(timeout=self.COMMAND_TIMEOUT)
        if self._error is not None:
            raise self._error
        return self

    def stop(self):
        """Stop the relay session (if any) and the background thread."""
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def wait_until_running(self, timeout: float = 30) -> bool:
        """Wait until a session is running. Returns True if running, False on timeout."""
        running = self._running.wait(timeout=timeout)
        if self._error is not None:
            raise self._error
        return running

    # =========================================================================
    # Commands (block until the manager has handled them)
    # =========================================================================

    def toggle(self, params: InProxyParameters):
        """Start the relay if stopped, stop it if running."""
        self._call(lambda m: m.toggle(params))

    def params_changed(self, params: InProxyParameters):
        """Restart a running relay with new parameters."""
        self._call(lambda m: m.params_changed(params))

    def stop_relay(self):
        """Stop the relay session, keeping the background loop alive."""
        self._call(lambda m: m.stop())

    def _call(self, command):
        loop = self._loop
        manager = self._manager
        if loop is None or manager is None:
            raise ConduitError("Relay stream not started")
        future = asyncio.run_coroutine_threadsafe(command(manager), loop)
        return future.result(timeout=self.COMMAND_TIMEOUT)

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def status(self) -> str:
        """Manager status: starting, started, stopping or stopped."""
        manager = self._manager
        return manager.status if manager is not None else STATUS_STOPPED

    @property
    def proxy_state(self) -> ProxyState:
        with self._lock:
            return self._proxy_state

    @property
    def feed_url(self) -> Optional[str]:
        """URL of the activity feed, or None when not serving one."""
        server = self._server
        return server.url if server is not None else None

    def latest_snapshot(self) -> Optional[ActivityStatsSnapshot]:
        """Last activity snapshot of the running session, or None."""
        with self._lock:
            return self._snapshot

    def total_bytes(self) -> tuple[int, int]:
        """(total_bytes_up, total_bytes_down) for the running session."""
        with self._lock:
            if self._snapshot is None:
                return 0, 0
            return self._snapshot.total_bytes_up, self._snapshot.total_bytes_down

    def get_stats(self) -> dict:
        """Get tick and feed statistics."""
        manager = self._manager
        if manager is None:
            return {
                "status": STATUS_STOPPED,
                "ticks_received": 0,
                "ticks_dropped": 0,
                "tick_interval": "n=0",
                "tick_interval_avg_ms": 0.0,
                "tick_interval_p95_ms": 0.0,
            }
        stats = manager.get_stats()
        server = self._server
        if server is not None:
            stats["feed"] = server.get_stats()
        return stats

    # =========================================================================
    # Context manager
    # =========================================================================

    def __enter__(self) -> "RelayStream":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =========================================================================
    # Internal
    # =========================================================================

    def _on_event(self, event: ConduitEvent):
        """Called by the manager on the loop thread for every event."""
        with self._lock:
            if event.type == EVENT_PROXY_STATE:
                self._proxy_state = event.data
                # A (re)start discards the previous session like a stop does
                if not event.data.running or self._manager.status == STATUS_STARTING:
                    self._snapshot = None
                    self._running.clear()
            elif event.type == EVENT_ACTIVITY_STATS:
                self._snapshot = event.data

        # First snapshot of a session arrives once the manager is started
        if event.type == EVENT_ACTIVITY_STATS and not self._running.is_set():
            self._running.set()

        if self._server is not None:
            self._server.publish(event)

        if self._user_callback is not None:
            try:
                self._user_callback(self, event)
            except Exception:
                pass

    def _run_thread(self):
        """Background thread entry point."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        try:
            self._loop.run_until_complete(self._run_until_stopped())
        except Exception as e:
            self._error = e if isinstance(e, ConduitError) else ConduitError(f"Relay error: {e}")
            self._ready.set()
        finally:
            self._loop.close()
            self._loop = None
            self._manager = None
            self._server = None

    async def _run_until_stopped(self):
        """Run the manager (and feed) until stop is requested."""
        if self._serve_feed:
            self._server = ActivityFeedServer(host=self._feed_host, port=self._feed_port)
            await self._server.start()

        self._manager = ConduitManager(
            self._engine,
            on_event=self._on_event,
            client_version=self._client_version,
        )
        self._ready.set()

        try:
            while not self._stopped.is_set():
                await asyncio.sleep(0.1)
        finally:
            await self._manager.stop()
            if self._server is not None:
                await self._server.stop()
