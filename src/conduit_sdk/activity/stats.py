"""
Per-session activity accumulator.

ActivityStats turns the engine's periodic activity ticks into running totals
plus a rolling window suitable for live charting. One instance exists per
relay session; starting a new session replaces it wholesale.
"""

import math
import threading
import time
from typing import Callable

from .series import BUCKET_COUNT, BUCKET_PERIOD_MS, RollingSeries
from .snapshot import UINT64_MAX, ActivityStatsSnapshot


def _ms_since(elapsed_seconds: float) -> int:
    """Round an interval to the nearest whole second, in milliseconds."""
    if elapsed_seconds <= 0:
        return 0
    # Round half up; absorbs tens of ms of timer jitter between ticks
    return int(math.floor(elapsed_seconds + 0.5)) * 1000


class ActivityStats:
    """
    Running totals and rolling window for one relay session.

    update() may be called from any thread; all mutation happens under a
    single lock, and snapshot() reads under the same lock, so a snapshot never
    shows one channel updated and another not.

    Args:
        clock: Wall-clock source in seconds. Defaults to time.time.
        bucket_period_ms: Bucket width of the fast window.
        bucket_count: Number of buckets in the fast window.

    Example:
        >>> stats = ActivityStats()
        >>> stats.update(bytes_up=512, bytes_down=2048, connecting_clients=0, connected_clients=1)
        >>> stats.snapshot().total_bytes_down
        2048
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        bucket_period_ms: int = BUCKET_PERIOD_MS,
        bucket_count: int = BUCKET_COUNT,
    ):
        self._clock = clock
        self._lock = threading.Lock()

        self.start_time: float = clock()
        self._last_update: float = self.start_time
        self._total_bytes_up = 0
        self._total_bytes_down = 0
        self._current_connecting_clients = 0
        self._current_connected_clients = 0
        self._ticks = 0

        self.series_fast = RollingSeries(bucket_period_ms, bucket_count)

    def update(self, bytes_up: int, bytes_down: int, connecting_clients: int, connected_clients: int):
        """
        Record one activity tick.

        Byte counts are deltas since the previous tick; client counts are
        instantaneous gauges. Negative values are treated as zero.
        """
        bytes_up = max(bytes_up, 0)
        bytes_down = max(bytes_down, 0)
        connecting_clients = max(connecting_clients, 0)
        connected_clients = max(connected_clients, 0)

        with self._lock:
            now = self._clock()

            self._total_bytes_up = min(self._total_bytes_up + bytes_up, UINT64_MAX)
            self._total_bytes_down = min(self._total_bytes_down + bytes_down, UINT64_MAX)
            self._current_connecting_clients = connecting_clients
            self._current_connected_clients = connected_clients

            ms_since_update = _ms_since(now - self._last_update)
            self.series_fast.advance_and_push(
                ms_since_update, bytes_up, bytes_down, connecting_clients, connected_clients
            )

            # A clock stepping backwards must not move last_update back
            if now > self._last_update:
                self._last_update = now
            self._ticks += 1

    @property
    def last_update(self) -> float:
        with self._lock:
            return self._last_update

    @property
    def elapsed_time_ms(self) -> int:
        """Milliseconds from session start to the last tick."""
        with self._lock:
            return int((self._last_update - self.start_time) * 1000)

    @property
    def total_bytes_up(self) -> int:
        with self._lock:
            return self._total_bytes_up

    @property
    def total_bytes_down(self) -> int:
        with self._lock:
            return self._total_bytes_down

    @property
    def current_connecting_clients(self) -> int:
        with self._lock:
            return self._current_connecting_clients

    @property
    def current_connected_clients(self) -> int:
        with self._lock:
            return self._current_connected_clients

    @property
    def tick_count(self) -> int:
        """Number of update() calls since the session started."""
        with self._lock:
            return self._ticks

    def snapshot(self) -> ActivityStatsSnapshot:
        """Take an immutable, internally consistent snapshot."""
        with self._lock:
            return ActivityStatsSnapshot(
                elapsed_time=int((self._last_update - self.start_time) * 1000),
                total_bytes_up=self._total_bytes_up,
                total_bytes_down=self._total_bytes_down,
                current_connecting_clients=self._current_connecting_clients,
                current_connected_clients=self._current_connected_clients,
                data_by_period=(self.series_fast.snapshot(),),
            )

    def __str__(self) -> str:
        snap = self.snapshot()
        return (
            f"elapsed={snap.elapsed_time}ms up={snap.total_bytes_up}B down={snap.total_bytes_down}B "
            f"connecting={snap.current_connecting_clients} connected={snap.current_connected_clients}"
        )
