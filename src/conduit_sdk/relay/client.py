"""
Activity feed client.

Connects a UI process to a relay's ActivityFeedServer and keeps the latest
proxy state and activity snapshot:

1. Connect to the feed WebSocket (JSON or msgpack frames)
2. The server replays its latest state and snapshot, then streams events
3. Events equal to the previous one of the same type are not re-delivered
4. On disconnect the cached state turns STOPPED and the client reconnects
   with exponential backoff
"""

import asyncio
import json
import os
import time
from typing import Callable, Optional

import aiohttp

from ..activity.snapshot import ActivityStatsSnapshot
from ..errors import FeedError, FrameError, SnapshotFormatError
from .events import (
    EVENT_ACTIVITY_STATS,
    EVENT_PROXY_ERROR,
    EVENT_PROXY_STATE,
    ConduitEvent,
    ProxyError,
    ProxyState,
)
from .service import DEFAULT_FEED_HOST, DEFAULT_FEED_PORT, FEED_PATH
from .._internal.stats import TimingStats
from .._internal.wire import unpack_event_frame


DEFAULT_FEED_URL = f"ws://{DEFAULT_FEED_HOST}:{DEFAULT_FEED_PORT}{FEED_PATH}"


class ActivityFeedClient:
    """
    Reconnecting consumer of a relay's activity feed.

    Args:
        url: Feed URL. Reads from CONDUIT_FEED_URL env var, defaults to ws://127.0.0.1:8765/ws.
        binary: Request msgpack frames instead of JSON text.
        on_event: Optional callback for each new event.
                  Signature: (client: ActivityFeedClient, event: ConduitEvent) -> None

    Example:
        >>> client = ActivityFeedClient(on_event=lambda c, e: print(e.type))
        >>> await client.run()
    """

    PING_INTERVAL = 30
    MAX_BACKOFF = 30

    def __init__(
        self,
        url: str | None = None,
        binary: bool = False,
        on_event: Optional[Callable[["ActivityFeedClient", ConduitEvent], None]] = None,
    ):
        self.url = url or os.getenv("CONDUIT_FEED_URL", DEFAULT_FEED_URL)
        self.binary = binary
        self.on_event = on_event

        self.proxy_state: ProxyState = ProxyState.unknown()
        self.activity_stats: Optional[ActivityStatsSnapshot] = None
        self.last_error: Optional[ProxyError] = None
        self.connected = False

        # Last delivered event per type, for de-duplication
        self._last_events: dict[str, ConduitEvent] = {}

        # Receive stats (internal)
        self._event_interval_stats = TimingStats()
        self._last_event_time: Optional[float] = None
        self._raw_bytes = 0
        self._msg_count = 0
        self._events_delivered = 0
        self._connections = 0

        # Shutdown flag
        self._stop_requested = False
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def request_stop(self):
        """Request graceful shutdown of the client."""
        self._stop_requested = True
        ws = self._ws
        loop = self._loop
        if ws is not None and not ws.closed and loop is not None and not loop.is_closed():
            asyncio.run_coroutine_threadsafe(ws.close(), loop)

    @property
    def feed_url(self) -> str:
        if not self.binary:
            return self.url
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}format=msgpack"

    # =========================================================================
    # Event handling
    # =========================================================================

    def handle_message(self, data: dict):
        """
        Handle one decoded server message.

        Raises:
            FeedError: If the server sent an error message.
            SnapshotFormatError: If an event does not match the wire contract.
        """
        msg_type = data.get("type")
        if msg_type in ("connected", "pong"):
            return
        if msg_type == "error":
            raise FeedError(data.get("message", "Unknown error"))

        self.apply_event(ConduitEvent.from_dict(data))

    def apply_event(self, event: ConduitEvent):
        """Update cached state and notify, skipping repeats of the previous event."""
        if self._last_events.get(event.type) == event:
            return
        self._last_events[event.type] = event

        if event.type == EVENT_PROXY_STATE:
            self.proxy_state = event.data
            if not event.data.running:
                self.activity_stats = None
        elif event.type == EVENT_ACTIVITY_STATS:
            self.activity_stats = event.data
        elif event.type == EVENT_PROXY_ERROR:
            self.last_error = event.data

        self._events_delivered += 1
        if self.on_event:
            self.on_event(self, event)

    def _decode(self, msg: aiohttp.WSMessage) -> dict:
        if msg.type == aiohttp.WSMsgType.BINARY:
            return unpack_event_frame(msg.data)
        try:
            data = json.loads(msg.data)
        except ValueError as e:
            raise FrameError(f"Invalid JSON frame: {e}") from e
        if not isinstance(data, dict):
            raise FrameError("Feed message is not an object")
        return data

    def _on_disconnect(self):
        self.connected = False
        self.activity_stats = None
        self.apply_event(ConduitEvent.proxy_state(ProxyState.stopped()))

    # =========================================================================
    # Connection
    # =========================================================================

    async def _ws_reader(self, ws: aiohttp.ClientWebSocketResponse):
        """Read frames and apply events."""
        async for msg in ws:
            if self._stop_requested:
                break

            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                receive_time_ms = time.time() * 1000
                self._raw_bytes += len(msg.data)
                self._msg_count += 1
                if self._last_event_time is not None:
                    self._event_interval_stats.record(receive_time_ms - self._last_event_time)
                self._last_event_time = receive_time_ms

                self.handle_message(self._decode(msg))

            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break

    async def _keepalive_pinger(self, ws: aiohttp.ClientWebSocketResponse):
        """Send periodic pings to keep connection alive."""
        while not self._stop_requested:
            await asyncio.sleep(self.PING_INTERVAL)
            if self._stop_requested:
                break
            try:
                await ws.send_json({"method": "ping"})
            except Exception:
                break

    async def _connect_and_stream(self, session: aiohttp.ClientSession):
        """Single connection attempt - connect and stream until closed."""
        async with session.ws_connect(self.feed_url) as ws:
            self._ws = ws
            self.connected = True
            self._connections += 1
            self._last_event_time = None

            ping_task = asyncio.create_task(self._keepalive_pinger(ws))
            try:
                await self._ws_reader(ws)
            finally:
                self._ws = None
                ping_task.cancel()
                await asyncio.gather(ping_task, return_exceptions=True)

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff, capped at MAX_BACKOFF seconds."""
        return min(2 ** attempt, self.MAX_BACKOFF)

    async def run(self, reconnect: bool = True, max_retries: int = 0):
        """
        Main run loop. Connects to the feed and processes events.

        Args:
            reconnect: If True, automatically reconnect on disconnect (default: True)
            max_retries: Max consecutive failed reconnects, 0 = unlimited (default: 0)

        Raises:
            FrameError / SnapshotFormatError: Protocol mismatch with the server (no retry)
            FeedError: Server reported an error and reconnect is off
        """
        retries = 0
        self._loop = asyncio.get_running_loop()

        async with aiohttp.ClientSession() as session:
            while not self._stop_requested:
                connections = self._connections
                try:
                    await self._connect_and_stream(session)
                    if self._stop_requested:
                        return
                    raise FeedError("Feed connection closed")
                except asyncio.CancelledError:
                    return  # Clean exit on cancellation
                except (FrameError, SnapshotFormatError):
                    # Permanent failures - don't retry
                    raise
                except Exception as e:
                    if self._stop_requested:
                        return

                    self._on_disconnect()

                    if not reconnect:
                        raise

                    # Only consecutive failed connects count towards max_retries
                    if self._connections != connections:
                        retries = 0
                    retries += 1
                    if max_retries > 0 and retries > max_retries:
                        print(f"Max retries ({max_retries}) exceeded, stopping")
                        raise

                    wait_time = self._backoff_delay(retries)
                    print(f"Disconnected: {e}. Reconnecting in {wait_time}s (attempt {retries})...")
                    await asyncio.sleep(wait_time)
                finally:
                    self.connected = False

    def get_stats(self) -> dict:
        """Get current statistics."""
        return {
            "connected": self.connected,
            "events_delivered": self._events_delivered,
            "event_interval": str(self._event_interval_stats),
            "event_interval_avg_ms": self._event_interval_stats.avg_ms(),
            "raw_bytes": self._raw_bytes,
            "msg_count": self._msg_count,
            "connections": self._connections,
        }

    def reset_stats(self):
        """Reset statistics counters."""
        self._events_delivered = 0
        self._event_interval_stats.reset()
        self._last_event_time = None
        self._raw_bytes = 0
        self._msg_count = 0
