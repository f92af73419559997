"""
Conduit SDK

Run a volunteer in-proxy relay and watch its activity.

Sync example (recommended):
    >>> from conduit_sdk import InProxyParameters, RelayStream
    >>> params = InProxyParameters(max_clients=10,
    ...                            limit_upstream_bytes_per_second=1_000_000,
    ...                            limit_downstream_bytes_per_second=1_000_000)
    >>> with RelayStream(engine, serve_feed=True) as relay:
    ...     relay.toggle(params)
    ...     snap = relay.latest_snapshot()

Async example:
    >>> from conduit_sdk import ConduitManager
    >>> manager = ConduitManager(engine, on_event=print)
    >>> await manager.start(params)

UI process example:
    >>> from conduit_sdk import ActivityFeedClient
    >>> client = ActivityFeedClient(url="ws://127.0.0.1:8765/ws")
    >>> await client.run()
"""

from .activity import (
    BUCKET_COUNT,
    BUCKET_PERIOD_MS,
    ActivityStats,
    ActivityStatsSnapshot,
    RollingSeries,
    SeriesSnapshot,
)
from .errors import (
    ConduitError,
    EngineStartError,
    FeedError,
    FrameError,
    ParameterError,
    SnapshotFormatError,
)
from .relay import (
    ActivityFeedClient,
    ActivityFeedServer,
    ConduitEvent,
    ConduitManager,
    EngineListener,
    InProxyParameters,
    ProxyError,
    ProxyState,
    RelayStream,
    TunnelEngine,
)

__version__ = "0.1.0"

__all__ = [
    # Sync wrapper (recommended for most users)
    "RelayStream",
    # Async session manager
    "ConduitManager",
    "TunnelEngine",
    "EngineListener",
    "InProxyParameters",
    # Activity statistics
    "ActivityStats",
    "RollingSeries",
    "ActivityStatsSnapshot",
    "SeriesSnapshot",
    "BUCKET_PERIOD_MS",
    "BUCKET_COUNT",
    # Events and feed
    "ConduitEvent",
    "ProxyState",
    "ProxyError",
    "ActivityFeedServer",
    "ActivityFeedClient",
    # Exceptions
    "ConduitError",
    "ParameterError",
    "EngineStartError",
    "SnapshotFormatError",
    "FrameError",
    "FeedError",
    # Version
    "__version__",
]
