"""
Fixed-capacity rolling time series for relay activity.

A RollingSeries holds four parallel channels (bytes up, bytes down,
connecting clients, connected clients), each exactly ``bucket_count``
buckets long, oldest first. Time that passes between observations is
represented by explicit zero buckets rather than a discontinuity, so the
window always reads as a contiguous chart of the last
``bucket_count * bucket_period_ms`` milliseconds.
"""

from collections import deque
from typing import Iterator

from .snapshot import SeriesSnapshot


# Fast window: 288 one-second buckets (4.8 minutes).
BUCKET_PERIOD_MS = 1000
BUCKET_COUNT = 288


class RollingSeries:
    """
    Multi-channel ring buffer keyed by a bucket period.

    Each push drops the oldest bucket of every channel and appends a new
    newest bucket, so all channels always have length ``bucket_count``.

    Args:
        bucket_period_ms: Width of one bucket in milliseconds.
        bucket_count: Number of buckets kept per channel.

    Example:
        >>> series = RollingSeries(bucket_period_ms=1000, bucket_count=5)
        >>> series.advance_and_push(3000, 10, 20, 1, 2)
        >>> list(series.bytes_up)
        [0, 0, 0, 0, 10]
    """

    def __init__(self, bucket_period_ms: int = BUCKET_PERIOD_MS, bucket_count: int = BUCKET_COUNT):
        if bucket_period_ms <= 0:
            raise ValueError("bucket_period_ms must be positive")
        if bucket_count <= 0:
            raise ValueError("bucket_count must be positive")

        self.bucket_period_ms = bucket_period_ms
        self.bucket_count = bucket_count

        # maxlen makes append() drop the oldest element
        self.bytes_up: deque[int] = deque([0] * bucket_count, maxlen=bucket_count)
        self.bytes_down: deque[int] = deque([0] * bucket_count, maxlen=bucket_count)
        self.connecting_clients: deque[int] = deque([0] * bucket_count, maxlen=bucket_count)
        self.connected_clients: deque[int] = deque([0] * bucket_count, maxlen=bucket_count)

    def __len__(self) -> int:
        return self.bucket_count

    @property
    def period_key(self) -> str:
        """Bucket period as used in ``dataByPeriod`` (e.g. ``"1000ms"``)."""
        return f"{self.bucket_period_ms}ms"

    def _push(self, bytes_up: int, bytes_down: int, connecting_clients: int, connected_clients: int):
        self.bytes_up.append(bytes_up)
        self.bytes_down.append(bytes_down)
        self.connecting_clients.append(connecting_clients)
        self.connected_clients.append(connected_clients)

    def gap_buckets(self, elapsed_ms: int) -> int:
        """
        Number of zero buckets to insert before an observation.

        The observation itself takes one push, so only the buckets strictly
        between the previous push and this one are gaps. Never more than
        ``bucket_count``: past that point the whole window has aged out.
        """
        elapsed = elapsed_ms // self.bucket_period_ms - 1
        if elapsed > self.bucket_count:
            return self.bucket_count
        return max(elapsed, 0)

    def advance_and_push(
        self,
        elapsed_ms: int,
        bytes_up: int,
        bytes_down: int,
        connecting_clients: int,
        connected_clients: int,
    ):
        """
        Roll the window forward by ``elapsed_ms`` and push one observation.

        Always results in at least one push: ticks arriving within the same
        bucket period each still advance the window by one bucket.
        """
        for _ in range(self.gap_buckets(elapsed_ms)):
            self._push(0, 0, 0, 0)

        self._push(bytes_up, bytes_down, connecting_clients, connected_clients)

    def iter_rows(self) -> Iterator[tuple[int, int, int, int]]:
        """Iterate buckets oldest first as (bytes_up, bytes_down, connecting, connected)."""
        return zip(self.bytes_up, self.bytes_down, self.connecting_clients, self.connected_clients)

    def snapshot(self) -> SeriesSnapshot:
        """Copy the window into an immutable SeriesSnapshot."""
        return SeriesSnapshot(
            bucket_period_ms=self.bucket_period_ms,
            num_buckets=self.bucket_count,
            bytes_up=tuple(self.bytes_up),
            bytes_down=tuple(self.bytes_down),
            connecting_clients=tuple(self.connecting_clients),
            connected_clients=tuple(self.connected_clients),
        )
