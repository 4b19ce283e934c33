"""
Statistics Tracker
==================

Tracks synchronization outcomes and estimate quality over a sliding window.
"""

from collections import deque

from .time_protocol import SyncEstimate


class SyncStats:
    """Sliding-window synchronization statistics.

    Args:
        window: Number of recent synchronizations to keep for averaging.
    """

    def __init__(self, window: int = 20):
        self._offsets: deque[float] = deque(maxlen=window)
        self._delays: deque[float] = deque(maxlen=window)
        self._reliabilities: deque[float] = deque(maxlen=window)
        self.sync_count: int = 0
        self.failure_count: int = 0
        self.discarded_count: int = 0
        self.cache_hits: int = 0

    def record(self, estimate: SyncEstimate):
        """Record a freshly synchronized estimate."""
        self._offsets.append(estimate.offset_ms)
        self._delays.append(estimate.delay_ms)
        self._reliabilities.append(estimate.reliability)
        self.sync_count += 1

    def record_failure(self):
        self.failure_count += 1

    def record_discarded(self):
        self.discarded_count += 1

    def record_cache_hit(self):
        self.cache_hits += 1

    @staticmethod
    def _avg(d: deque) -> float:
        """Average of a deque, or 0.0 if empty."""
        return sum(d) / len(d) if d else 0.0

    @property
    def avg_offset_ms(self) -> float:
        return self._avg(self._offsets)

    @property
    def avg_delay_ms(self) -> float:
        return self._avg(self._delays)

    @property
    def avg_reliability(self) -> float:
        return self._avg(self._reliabilities)

    @property
    def offset_spread_ms(self) -> float:
        """Max minus min offset in the window; a rough jitter measure."""
        if not self._offsets:
            return 0.0
        return max(self._offsets) - min(self._offsets)

    def __str__(self) -> str:
        return (
            f"syncs={self.sync_count} fails={self.failure_count} "
            f"hits={self.cache_hits} "
            f"offset={self.avg_offset_ms:.1f}ms(±{self.offset_spread_ms / 2:.1f}) "
            f"delay={self.avg_delay_ms:.1f}ms "
            f"rel={self.avg_reliability:.2f}"
        )
