"""
Activity feed server.

Publishes ConduitEvents from the relay process to UI processes over a
WebSocket. Each connected client gets its own bounded queue and writer task,
so one slow client never delays the others.

Protocol (server -> client):
    {"type": "connected"}                     on connect
    {"type": "<event type>", "data": {...}}   ConduitEvent.to_dict()
    {"type": "pong"}                          reply to a ping
    {"type": "error", "message": "..."}       bad request

Protocol (client -> server):
    {"method": "ping"}

Frames are JSON text by default; connect with ``?format=msgpack`` to get
binary frames (see conduit_sdk._internal.wire).
"""

import asyncio
import json
import os
from typing import Optional

from aiohttp import WSMsgType, web

from .events import EVENT_ACTIVITY_STATS, EVENT_PROXY_STATE, ConduitEvent
from .._internal.wire import pack_event_frame


# Default configuration
DEFAULT_FEED_HOST = "127.0.0.1"
DEFAULT_FEED_PORT = 8765
FEED_PATH = "/ws"


class ActivityFeedServer:
    """
    WebSocket server broadcasting relay events.

    publish() must be called on the event loop the server runs on
    (ConduitManager emits there).

    Args:
        host: Bind address. Reads from CONDUIT_FEED_HOST env var, defaults to 127.0.0.1.
        port: Bind port. Reads from CONDUIT_FEED_PORT env var, defaults to 8765.
              Pass 0 for an ephemeral port (see bound_port).

    Example:
        >>> server = ActivityFeedServer(port=0)
        >>> await server.start()
        >>> manager = ConduitManager(engine, on_event=server.publish)
    """

    MAX_QUEUE_SIZE = 1000

    def __init__(self, host: str | None = None, port: int | None = None):
        self.host = host or os.getenv("CONDUIT_FEED_HOST", DEFAULT_FEED_HOST)
        self.port = port if port is not None else int(os.getenv("CONDUIT_FEED_PORT", DEFAULT_FEED_PORT))

        self._app = web.Application()
        self._app.router.add_get(FEED_PATH, self._handle_ws)
        self._runner: Optional[web.AppRunner] = None

        # ws -> outbound queue of wire dicts
        self._clients: dict[web.WebSocketResponse, asyncio.Queue] = {}

        # Replayed to each new client
        self._latest_state: Optional[ConduitEvent] = None
        self._latest_stats: Optional[ConduitEvent] = None

        self._events_published = 0
        self._clients_dropped = 0

    @property
    def bound_port(self) -> int:
        """Port actually bound (useful with port=0)."""
        if self._runner is None or not self._runner.addresses:
            return self.port
        return self._runner.addresses[0][1]

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.bound_port}{FEED_PATH}"

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self):
        """Start listening."""
        if self._runner is not None:
            raise RuntimeError("Feed server already started")
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

    async def stop(self):
        """Close all client connections and stop listening."""
        for ws in list(self._clients):
            await ws.close()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def publish(self, event: ConduitEvent):
        """Queue an event for every connected client."""
        if event.type == EVENT_PROXY_STATE:
            self._latest_state = event
            # Stats belong to a session; a stopped relay has none
            if not event.data.running:
                self._latest_stats = None
        elif event.type == EVENT_ACTIVITY_STATS:
            self._latest_stats = event
        self._events_published += 1

        message = event.to_dict()
        for ws, queue in list(self._clients.items()):
            self._enqueue(ws, queue, message)

    def _enqueue(self, ws: web.WebSocketResponse, queue: asyncio.Queue, message: dict):
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            print(f"Queue overflow ({queue.qsize()} >= {self.MAX_QUEUE_SIZE}), dropping client")
            self._clients.pop(ws, None)
            self._clients_dropped += 1
            asyncio.ensure_future(ws.close())

    async def _writer(self, ws: web.WebSocketResponse, queue: asyncio.Queue, binary: bool):
        """Drain a client's queue onto its socket."""
        while True:
            message = await queue.get()
            if binary:
                await ws.send_bytes(pack_event_frame(message))
            else:
                await ws.send_str(json.dumps(message, separators=(",", ":")))

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        binary = request.query.get("format") == "msgpack"
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.MAX_QUEUE_SIZE)

        queue.put_nowait({"type": "connected"})
        for event in (self._latest_state, self._latest_stats):
            if event is not None:
                queue.put_nowait(event.to_dict())

        self._clients[ws] = queue
        writer_task = asyncio.create_task(self._writer(ws, queue, binary))

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._handle_request(ws, queue, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            self._clients.pop(ws, None)
            writer_task.cancel()
            await asyncio.gather(writer_task, return_exceptions=True)

        return ws

    def _handle_request(self, ws: web.WebSocketResponse, queue: asyncio.Queue, text: str):
        try:
            data = json.loads(text)
        except ValueError:
            self._enqueue(ws, queue, {"type": "error", "message": "invalid json"})
            return

        method = data.get("method") if isinstance(data, dict) else None
        if method == "ping":
            self._enqueue(ws, queue, {"type": "pong"})
        else:
            self._enqueue(ws, queue, {"type": "error", "message": f"unknown method: {method}"})

    def get_stats(self) -> dict:
        return {
            "clients": len(self._clients),
            "events_published": self._events_published,
            "clients_dropped": self._clients_dropped,
        }
