"""
Relay session control and event delivery.

Manages the tunneling engine's session lifecycle and delivers ConduitEvents
(proxy state, errors, activity stats) to UI consumers in-process or over
the activity feed.
"""

from .client import ActivityFeedClient
from .events import (
    ACTION_MUST_UPGRADE,
    ACTION_RESTART_FAILED,
    ACTION_START_FAILED,
    EVENT_ACTIVITY_STATS,
    EVENT_PROXY_ERROR,
    EVENT_PROXY_STATE,
    NETWORK_HAS_INTERNET,
    NETWORK_NO_INTERNET,
    STATUS_RUNNING,
    STATUS_STOPPED,
    STATUS_UNKNOWN,
    ConduitEvent,
    ProxyError,
    ProxyState,
)
from .manager import (
    STATUS_STARTED,
    STATUS_STARTING,
    STATUS_STOPPING,
    ConduitManager,
    EngineListener,
    TunnelEngine,
)
from .params import InProxyParameters
from .service import ActivityFeedServer
from .sync import RelayStream

__all__ = [
    # Sync wrapper (recommended for most users)
    "RelayStream",
    # Async session manager
    "ConduitManager",
    "TunnelEngine",
    "EngineListener",
    "InProxyParameters",
    # Feed
    "ActivityFeedServer",
    "ActivityFeedClient",
    # Events
    "ConduitEvent",
    "ProxyState",
    "ProxyError",
    "EVENT_PROXY_STATE",
    "EVENT_PROXY_ERROR",
    "EVENT_ACTIVITY_STATS",
    "STATUS_RUNNING",
    "STATUS_STOPPED",
    "STATUS_UNKNOWN",
    "NETWORK_HAS_INTERNET",
    "NETWORK_NO_INTERNET",
    "ACTION_START_FAILED",
    "ACTION_RESTART_FAILED",
    "ACTION_MUST_UPGRADE",
    # Manager status
    "STATUS_STARTING",
    "STATUS_STARTED",
    "STATUS_STOPPING",
]
