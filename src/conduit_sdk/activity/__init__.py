"""
Relay activity statistics.

Accumulates the tunneling engine's activity ticks into running totals and
a rolling per-second window, and exposes immutable snapshots for display
and cross-process delivery.
"""

from .series import BUCKET_COUNT, BUCKET_PERIOD_MS, RollingSeries
from .snapshot import (
    UINT64_MAX,
    ActivityStatsSnapshot,
    SeriesSnapshot,
    parse_period_key,
)
from .stats import ActivityStats

__all__ = [
    # Accumulator
    "ActivityStats",
    "RollingSeries",
    # Snapshots
    "ActivityStatsSnapshot",
    "SeriesSnapshot",
    "parse_period_key",
    # Constants
    "BUCKET_PERIOD_MS",
    "BUCKET_COUNT",
    "UINT64_MAX",
]
