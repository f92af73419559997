"""
Events delivered from the relay to its UI.

Three event types cross the boundary, each as {"type": ..., "data": ...}:

- proxyState: {"status": "RUNNING"|"STOPPED"|"UNKNOWN",
               "networkState": "HAS_INTERNET"|"NO_INTERNET"|None}
- proxyError: {"action": "proxyStartFailed"|"proxyRestartFailed"|"inProxyMustUpgrade"}
- inProxyActivityStats: ActivityStatsSnapshot.to_dict()
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from ..activity.snapshot import ActivityStatsSnapshot
from ..errors import SnapshotFormatError


STATUS_RUNNING = "RUNNING"
STATUS_STOPPED = "STOPPED"
STATUS_UNKNOWN = "UNKNOWN"
PROXY_STATUSES = (STATUS_RUNNING, STATUS_STOPPED, STATUS_UNKNOWN)

NETWORK_HAS_INTERNET = "HAS_INTERNET"
NETWORK_NO_INTERNET = "NO_INTERNET"
NETWORK_STATES = (NETWORK_HAS_INTERNET, NETWORK_NO_INTERNET)

ACTION_START_FAILED = "proxyStartFailed"
ACTION_RESTART_FAILED = "proxyRestartFailed"
ACTION_MUST_UPGRADE = "inProxyMustUpgrade"
ERROR_ACTIONS = (ACTION_START_FAILED, ACTION_RESTART_FAILED, ACTION_MUST_UPGRADE)

EVENT_PROXY_STATE = "proxyState"
EVENT_PROXY_ERROR = "proxyError"
EVENT_ACTIVITY_STATS = "inProxyActivityStats"
EVENT_TYPES = (EVENT_PROXY_STATE, EVENT_PROXY_ERROR, EVENT_ACTIVITY_STATS)


@dataclass(frozen=True)
class ProxyState:
    """Relay run state as shown to the user."""

    status: str  # RUNNING, STOPPED or UNKNOWN
    network_state: Optional[str] = None  # HAS_INTERNET, NO_INTERNET, or None if unknown

    @classmethod
    def stopped(cls) -> "ProxyState":
        return cls(status=STATUS_STOPPED)

    @classmethod
    def unknown(cls) -> "ProxyState":
        return cls(status=STATUS_UNKNOWN)

    @classmethod
    def from_reachability(cls, running: bool, internet_reachable: Optional[bool]) -> "ProxyState":
        if internet_reachable is None:
            network_state = None
        else:
            network_state = NETWORK_HAS_INTERNET if internet_reachable else NETWORK_NO_INTERNET
        return cls(status=STATUS_RUNNING if running else STATUS_STOPPED, network_state=network_state)

    @property
    def running(self) -> bool:
        return self.status == STATUS_RUNNING

    def to_dict(self) -> dict:
        return {"status": self.status, "networkState": self.network_state}

    @classmethod
    def from_dict(cls, data: Any) -> "ProxyState":
        if not isinstance(data, dict):
            raise SnapshotFormatError("proxyState data must be an object")
        status = data.get("status")
        if status not in PROXY_STATUSES:
            raise SnapshotFormatError(f"Invalid proxy status: {status!r}")
        network_state = data.get("networkState")
        if network_state is not None and network_state not in NETWORK_STATES:
            raise SnapshotFormatError(f"Invalid network state: {network_state!r}")
        return cls(status=status, network_state=network_state)


@dataclass(frozen=True)
class ProxyError:
    """A relay failure the UI should surface."""

    action: str  # one of ERROR_ACTIONS

    def to_dict(self) -> dict:
        return {"action": self.action}

    @classmethod
    def from_dict(cls, data: Any) -> "ProxyError":
        if not isinstance(data, dict):
            raise SnapshotFormatError("proxyError data must be an object")
        action = data.get("action")
        if action not in ERROR_ACTIONS:
            raise SnapshotFormatError(f"Invalid proxy error action: {action!r}")
        return cls(action=action)


EventData = Union[ProxyState, ProxyError, ActivityStatsSnapshot]


@dataclass(frozen=True)
class ConduitEvent:
    """Tagged event sent from the relay to UI consumers."""

    type: str
    data: EventData

    @classmethod
    def proxy_state(cls, state: ProxyState) -> "ConduitEvent":
        return cls(type=EVENT_PROXY_STATE, data=state)

    @classmethod
    def proxy_error(cls, action: str) -> "ConduitEvent":
        return cls(type=EVENT_PROXY_ERROR, data=ProxyError(action=action))

    @classmethod
    def activity_stats(cls, snapshot: ActivityStatsSnapshot) -> "ConduitEvent":
        return cls(type=EVENT_ACTIVITY_STATS, data=snapshot)

    def to_dict(self) -> dict:
        return {"type": self.type, "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "ConduitEvent":
        """
        Decode an event dict, dispatching on "type".

        Raises:
            SnapshotFormatError: Unknown type or malformed data.
        """
        if not isinstance(data, dict):
            raise SnapshotFormatError("Event must be an object")

        event_type = data.get("type")
        payload = data.get("data")

        if event_type == EVENT_PROXY_STATE:
            return cls(type=event_type, data=ProxyState.from_dict(payload))
        elif event_type == EVENT_PROXY_ERROR:
            return cls(type=event_type, data=ProxyError.from_dict(payload))
        elif event_type == EVENT_ACTIVITY_STATS:
            return cls(type=event_type, data=ActivityStatsSnapshot.from_dict(payload))

        raise SnapshotFormatError(f"Unknown event type: {event_type!r}")
