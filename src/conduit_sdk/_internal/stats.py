"""Internal timing statistics utilities."""

from collections import deque

from sortedcontainers import SortedList


class TimingStats:
    """Track timing statistics over a rolling window."""

    def __init__(self, window_size: int = 100):
        self._window: deque[float] = deque(maxlen=window_size)
        # Same samples kept ordered for percentile reads
        self._sorted = SortedList()

    def record(self, ms: float):
        if len(self._window) == self._window.maxlen:
            self._sorted.remove(self._window[0])
        self._window.append(ms)
        self._sorted.add(ms)

    @property
    def count(self) -> int:
        return len(self._window)

    def avg_ms(self) -> float:
        if not self._window:
            return 0.0
        return sum(self._window) / len(self._window)

    def min_ms(self) -> float:
        return self._sorted[0] if self._sorted else 0.0

    def max_ms(self) -> float:
        return self._sorted[-1] if self._sorted else 0.0

    def percentile_ms(self, p: float) -> float:
        """Nearest-rank percentile, p in [0, 100]."""
        if not self._sorted:
            return 0.0
        rank = round(p / 100 * (len(self._sorted) - 1))
        return self._sorted[min(max(rank, 0), len(self._sorted) - 1)]

    def reset(self):
        self._window.clear()
        self._sorted.clear()

    def __str__(self) -> str:
        if not self._window:
            return "n=0"
        return (
            f"n={self.count} avg={self.avg_ms():.2f}ms min={self.min_ms():.2f}ms "
            f"p50={self.percentile_ms(50):.2f}ms p95={self.percentile_ms(95):.2f}ms "
            f"max={self.max_ms():.2f}ms"
        )
