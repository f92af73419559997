"""
Relay session management over the tunneling engine.

The engine itself (relaying, peer discovery, key handling) is an external
collaborator reached through the TunnelEngine protocol. ConduitManager owns
the session lifecycle:

1. start: stop any running engine, start it with the new config, and on
   success create a fresh ActivityStats for the session
2. activity: engine ticks (from any thread) are marshalled onto the
   manager's event loop and fed into the session's ActivityStats
3. stop: stop the engine and discard the session's ActivityStats

Every state change and every tick is reported through ``on_event`` as a
ConduitEvent.
"""

import asyncio
import os
import time
from typing import Callable, Optional, Protocol

from ..activity.snapshot import ActivityStatsSnapshot
from ..activity.stats import ActivityStats
from ..errors import ConduitError, EngineStartError
from .events import (
    ACTION_MUST_UPGRADE,
    ACTION_RESTART_FAILED,
    ACTION_START_FAILED,
    ConduitEvent,
    ProxyState,
)
from .params import InProxyParameters
from .._internal.stats import TimingStats


DEFAULT_CLIENT_VERSION = "1"

STATUS_STARTING = "starting"
STATUS_STARTED = "started"
STATUS_STOPPING = "stopping"
STATUS_STOPPED = "stopped"


class EngineListener(Protocol):
    """Callbacks the engine invokes, possibly from its own threads."""

    def on_inproxy_proxy_activity(
        self, connecting_clients: int, connected_clients: int, bytes_up: int, bytes_down: int
    ) -> None: ...

    def on_inproxy_must_upgrade(self) -> None: ...

    def on_internet_reachability_changed(self, reachable: bool) -> None: ...


class TunnelEngine(Protocol):
    """
    The opaque tunneling engine.

    start() returns False (or raises) if the engine could not start with
    the given config. The engine reports activity through the listener
    passed to start().
    """

    async def start(self, config: dict, listener: EngineListener) -> bool: ...

    async def stop(self) -> None: ...

    @property
    def is_internet_reachable(self) -> Optional[bool]: ...


class ConduitManager:
    """
    Owns the relay session and its activity statistics.

    All public coroutines must run on one event loop; engine callbacks may
    arrive on any thread.

    Args:
        engine: TunnelEngine implementation.
        on_event: Optional callback for every ConduitEvent.
                  Signature: (event: ConduitEvent) -> None
        client_version: Reported to the engine. Reads from
                        CONDUIT_CLIENT_VERSION env var if not provided.
        clock: Wall-clock source in seconds, shared with ActivityStats.

    Example:
        >>> manager = ConduitManager(engine, on_event=print)
        >>> await manager.toggle(InProxyParameters(10, 1_000_000, 1_000_000))
    """

    def __init__(
        self,
        engine: TunnelEngine,
        on_event: Optional[Callable[[ConduitEvent], None]] = None,
        client_version: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.on_event = on_event
        self.client_version = client_version or os.getenv("CONDUIT_CLIENT_VERSION", DEFAULT_CLIENT_VERSION)
        self._clock = clock

        self.status = STATUS_STOPPED
        self.params: Optional[InProxyParameters] = None
        self.activity_stats: Optional[ActivityStats] = None

        # Loop that owns this manager; set on first start()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Tick stats (internal)
        self._tick_interval_stats = TimingStats()
        self._last_tick_time: Optional[float] = None
        self._ticks_received = 0
        self._ticks_dropped = 0

    @property
    def running(self) -> bool:
        return self.status == STATUS_STARTED

    def snapshot(self) -> Optional[ActivityStatsSnapshot]:
        """Snapshot of the current session, or None when no session is active."""
        stats = self.activity_stats
        return stats.snapshot() if stats is not None else None

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def start(self, params: InProxyParameters) -> bool:
        """
        Start (or restart) the relay with the given parameters.

        Returns:
            True if a new session started, False if the request was ignored
            (already starting, or already running with identical parameters).

        Raises:
            EngineStartError: If the engine failed to start.
        """
        if self.status == STATUS_STARTING:
            print("Concurrent start requests are not permitted.")
            return False

        if self.status == STATUS_STARTED and params == self.params:
            print("Restart with duplicate parameters denied.")
            return False

        self._loop = asyncio.get_running_loop()
        self._set_status(STATUS_STARTING)

        self.activity_stats = None
        self.params = params

        config = params.to_engine_config(self.client_version)
        error: Optional[Exception] = None
        try:
            # Keep the starting status across stop/start to block other requests
            await self.engine.stop()
            success = await self.engine.start(config, self)
        except Exception as e:
            success = False
            error = e

        if not success:
            self._set_status(STATUS_STOPPED)
            self.params = None
            raise EngineStartError(
                f"Failed to start relay (max_clients={params.max_clients}): {error or 'engine refused'}"
            ) from error

        self._reset_tick_timing()
        self.activity_stats = ActivityStats(clock=self._clock)
        self._set_status(STATUS_STARTED)
        self._emit(ConduitEvent.activity_stats(self.activity_stats.snapshot()))
        return True

    async def stop(self):
        """Stop the relay. Only acts when a session is running."""
        if self.status != STATUS_STARTED:
            if self.status == STATUS_STARTING:
                print("Cannot stop relay during starting process.")
            return

        self._set_status(STATUS_STOPPING)
        try:
            await self.engine.stop()
        finally:
            self.activity_stats = None
            self.params = None
            self._set_status(STATUS_STOPPED)

    async def toggle(self, params: InProxyParameters):
        """Start when stopped, stop when running; no-op while transitioning."""
        if self.status == STATUS_STOPPED:
            try:
                await self.start(params)
            except EngineStartError as e:
                print(f"Proxy start failed: {e}")
                self._emit(ConduitEvent.proxy_error(ACTION_START_FAILED))
        elif self.status == STATUS_STARTED:
            await self.stop()

    async def params_changed(self, params: InProxyParameters):
        """
        Apply new parameters to a running relay by restarting it.

        Raises:
            ConduitError: If the relay is still starting.
        """
        if self.status in (STATUS_STOPPED, STATUS_STOPPING):
            return
        if self.status == STATUS_STARTING:
            raise ConduitError("Cannot change parameters while relay is starting.")

        try:
            await self.start(params)
        except EngineStartError as e:
            print(f"Proxy restart failed: {e}")
            self._emit(ConduitEvent.proxy_error(ACTION_RESTART_FAILED))

    # =========================================================================
    # Engine listener (any thread)
    # =========================================================================

    def on_inproxy_proxy_activity(
        self, connecting_clients: int, connected_clients: int, bytes_up: int, bytes_down: int
    ):
        self._dispatch(
            self.update_activity_stats, connecting_clients, connected_clients, bytes_up, bytes_down
        )

    def on_internet_reachability_changed(self, reachable: bool):
        self._dispatch(self._emit_state, reachable)

    def on_inproxy_must_upgrade(self):
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self._handle_must_upgrade(), loop)
        future.add_done_callback(self._report_must_upgrade)

    def _dispatch(self, fn: Callable, *args):
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(fn, *args)

    async def _handle_must_upgrade(self):
        self._emit(ConduitEvent.proxy_error(ACTION_MUST_UPGRADE))
        await self.stop()

    @staticmethod
    def _report_must_upgrade(future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            print(f"Stop after must-upgrade failed: {error}")

    # =========================================================================
    # Activity (event loop)
    # =========================================================================

    def update_activity_stats(
        self, connecting_clients: int, connected_clients: int, bytes_up: int, bytes_down: int
    ):
        """Feed one engine tick into the current session. Dropped when no session is active."""
        stats = self.activity_stats
        if stats is None:
            self._ticks_dropped += 1
            return

        now = self._clock()
        if self._last_tick_time is not None:
            self._tick_interval_stats.record((now - self._last_tick_time) * 1000)
        self._last_tick_time = now
        self._ticks_received += 1

        stats.update(
            bytes_up=bytes_up,
            bytes_down=bytes_down,
            connecting_clients=connecting_clients,
            connected_clients=connected_clients,
        )
        self._emit(ConduitEvent.activity_stats(stats.snapshot()))

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict:
        """Get tick counters and tick-interval timing."""
        return {
            "status": self.status,
            "ticks_received": self._ticks_received,
            "ticks_dropped": self._ticks_dropped,
            "tick_interval": str(self._tick_interval_stats),
            "tick_interval_avg_ms": self._tick_interval_stats.avg_ms(),
            "tick_interval_p95_ms": self._tick_interval_stats.percentile_ms(95),
        }

    def reset_stats(self):
        """Reset tick counters (session totals are untouched)."""
        self._ticks_received = 0
        self._ticks_dropped = 0
        self._reset_tick_timing()

    def _reset_tick_timing(self):
        self._tick_interval_stats.reset()
        self._last_tick_time = None

    # =========================================================================
    # Internal
    # =========================================================================

    def _emit(self, event: ConduitEvent):
        if self.on_event is not None:
            self.on_event(event)

    def _emit_state(self, internet_reachable: Optional[bool]):
        running = self.status in (STATUS_STARTING, STATUS_STARTED)
        self._emit(ConduitEvent.proxy_state(ProxyState.from_reachability(running, internet_reachable)))

    def _set_status(self, status: str):
        self.status = status
        self._emit_state(self.engine.is_internet_reachable)
