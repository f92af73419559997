"""
Immutable activity snapshots and their wire representation.

A snapshot is what crosses process and runtime boundaries. Its dict form
uses the camelCase field names the UI consumes:

    {
        "elapsedTime": 12000,
        "totalBytesUp": 1024,
        "totalBytesDown": 4096,
        "currentConnectingClients": 1,
        "currentConnectedClients": 3,
        "dataByPeriod": {
            "1000ms": {
                "numBuckets": 288,
                "bytesUp": [...],
                "bytesDown": [...],
                "connectingClients": [...],
                "connectedClients": [...],
            }
        }
    }
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import SnapshotFormatError


UINT64_MAX = 2**64 - 1

_PERIOD_KEY_RE = re.compile(r"^([1-9][0-9]*)ms$")

_SERIES_CHANNELS = ("bytesUp", "bytesDown", "connectingClients", "connectedClients")


def _require_uint(data: dict, key: str, where: str, maximum: int = UINT64_MAX) -> int:
    if key not in data:
        raise SnapshotFormatError(f"{where}: missing field '{key}'")
    value = data[key]
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, int):
        raise SnapshotFormatError(f"{where}: '{key}' must be an integer, got {value!r}")
    if value < 0 or value > maximum:
        raise SnapshotFormatError(f"{where}: '{key}' out of range: {value}")
    return value


def _require_uint_list(data: dict, key: str, where: str, length: int) -> tuple[int, ...]:
    if key not in data:
        raise SnapshotFormatError(f"{where}: missing field '{key}'")
    values = data[key]
    if not isinstance(values, (list, tuple)):
        raise SnapshotFormatError(f"{where}: '{key}' must be a list")
    if len(values) != length:
        raise SnapshotFormatError(
            f"{where}: '{key}' has {len(values)} buckets, expected {length}"
        )
    for v in values:
        if isinstance(v, bool) or not isinstance(v, int) or v < 0 or v > UINT64_MAX:
            raise SnapshotFormatError(f"{where}: '{key}' contains invalid value {v!r}")
    return tuple(values)


def parse_period_key(key: str) -> int:
    """Parse a ``dataByPeriod`` key such as ``"1000ms"`` into milliseconds."""
    m = _PERIOD_KEY_RE.match(key) if isinstance(key, str) else None
    if m is None:
        raise SnapshotFormatError(f"Invalid bucket period key: {key!r}")
    return int(m.group(1))


@dataclass(frozen=True)
class SeriesSnapshot:
    """
    One rolling window at a point in time.

    All four channels have exactly ``num_buckets`` entries, oldest first.
    """

    bucket_period_ms: int
    num_buckets: int
    bytes_up: tuple[int, ...]
    bytes_down: tuple[int, ...]
    connecting_clients: tuple[int, ...]
    connected_clients: tuple[int, ...]

    @property
    def period_key(self) -> str:
        return f"{self.bucket_period_ms}ms"

    def to_dict(self) -> dict:
        """Convert to the per-period dict (the period itself is the parent key)."""
        return {
            "numBuckets": self.num_buckets,
            "bytesUp": list(self.bytes_up),
            "bytesDown": list(self.bytes_down),
            "connectingClients": list(self.connecting_clients),
            "connectedClients": list(self.connected_clients),
        }

    @classmethod
    def from_dict(cls, period_key: str, data: Any) -> "SeriesSnapshot":
        where = f"dataByPeriod[{period_key!r}]"
        if not isinstance(data, dict):
            raise SnapshotFormatError(f"{where} must be an object")
        period_ms = parse_period_key(period_key)
        num_buckets = _require_uint(data, "numBuckets", where)
        if num_buckets == 0:
            raise SnapshotFormatError(f"{where}: 'numBuckets' must be positive")
        bytes_up, bytes_down, connecting, connected = (
            _require_uint_list(data, channel, where, num_buckets) for channel in _SERIES_CHANNELS
        )
        return cls(
            bucket_period_ms=period_ms,
            num_buckets=num_buckets,
            bytes_up=bytes_up,
            bytes_down=bytes_down,
            connecting_clients=connecting,
            connected_clients=connected,
        )


@dataclass(frozen=True)
class ActivityStatsSnapshot:
    """
    Consistent, read-only view of one relay session's activity.

    Attributes:
        elapsed_time: Milliseconds from session start to the last tick
        total_bytes_up: Cumulative bytes relayed upstream
        total_bytes_down: Cumulative bytes relayed downstream
        current_connecting_clients: Last reported connecting-client gauge
        current_connected_clients: Last reported connected-client gauge
        data_by_period: Rolling windows, ordered by bucket period
    """

    elapsed_time: int
    total_bytes_up: int
    total_bytes_down: int
    current_connecting_clients: int
    current_connected_clients: int
    data_by_period: tuple[SeriesSnapshot, ...]

    def series(self, bucket_period_ms: int) -> Optional[SeriesSnapshot]:
        """Get the window with the given bucket period, or None."""
        for s in self.data_by_period:
            if s.bucket_period_ms == bucket_period_ms:
                return s
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "elapsedTime": self.elapsed_time,
            "totalBytesUp": self.total_bytes_up,
            "totalBytesDown": self.total_bytes_down,
            "currentConnectingClients": self.current_connecting_clients,
            "currentConnectedClients": self.current_connected_clients,
            "dataByPeriod": {s.period_key: s.to_dict() for s in self.data_by_period},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ActivityStatsSnapshot":
        """
        Build a snapshot from its dict form, validating the shape.

        Raises:
            SnapshotFormatError: If a field is missing, negative, not an
                integer, or a series length disagrees with ``numBuckets``.
        """
        if not isinstance(data, dict):
            raise SnapshotFormatError("Activity stats must be an object")

        where = "inProxyActivityStats"
        by_period = data.get("dataByPeriod")
        if not isinstance(by_period, dict):
            raise SnapshotFormatError(f"{where}: 'dataByPeriod' must be an object")

        series = sorted(
            (SeriesSnapshot.from_dict(key, value) for key, value in by_period.items()),
            key=lambda s: s.bucket_period_ms,
        )

        return cls(
            elapsed_time=_require_uint(data, "elapsedTime", where),
            total_bytes_up=_require_uint(data, "totalBytesUp", where),
            total_bytes_down=_require_uint(data, "totalBytesDown", where),
            current_connecting_clients=_require_uint(data, "currentConnectingClients", where),
            current_connected_clients=_require_uint(data, "currentConnectedClients", where),
            data_by_period=tuple(series),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> "ActivityStatsSnapshot":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise SnapshotFormatError(f"Invalid JSON: {e}") from e
        return cls.from_dict(data)
