"""
Clock Synchronization
=====================

NTP-style offset estimation from a batch of HTTP time samples.

Offset convention:
    offset = server_time - local_time
    server_time = local_time + offset

Pipeline per synchronization:
    filter_outliers  - drop samples whose delay is far from the batch mean
    estimate_offset  - take the lowest-delay sample as the best estimate
    DriftTracker     - two-point rate of change of the offset over time
"""

import logging
import statistics
from dataclasses import replace
from typing import Sequence

from .config import MIN_FILTER_POPULATION, OUTLIER_STDDEV_LIMIT
from .errors import NoValidSamples
from .time_protocol import DriftStatistics, SyncEstimate, TimeSample

logger = logging.getLogger(__name__)


def filter_outliers(
    samples: Sequence[TimeSample],
    stddev_limit: float = OUTLIER_STDDEV_LIMIT,
) -> list[TimeSample]:
    """Drop samples whose delay lies beyond ``stddev_limit`` σ of the mean.

    Batches smaller than three samples are returned unchanged. Order is
    preserved.
    """
    if len(samples) < MIN_FILTER_POPULATION:
        return list(samples)

    delays = [s.round_trip_delay for s in samples]
    mean = statistics.fmean(delays)
    limit = stddev_limit * statistics.pstdev(delays, mean)

    kept = [s for s in samples if abs(s.round_trip_delay - mean) <= limit]
    if len(kept) < len(samples):
        logger.debug(
            f"Outlier filter: kept {len(kept)}/{len(samples)} "
            f"(mean={mean:.1f}ms limit=±{limit:.1f}ms)"
        )
    return kept


def estimate_offset(samples: Sequence[TimeSample], now_local: float) -> SyncEstimate:
    """Estimate clock offset from the sample with the lowest delay.

    A lower delay bounds the offset uncertainty more tightly. Ties go to
    the earliest sample.

    Args:
        samples:   Filtered samples, in collection order.
        now_local: Local time of the estimate (ms).

    Returns:
        Estimate with a zero drift rate; the drift tracker fills it in.

    Raises:
        NoValidSamples: if no sample carries a server time.
    """
    best = None
    for sample in samples:
        if not sample.valid:
            continue
        if best is None or sample.round_trip_delay < best.round_trip_delay:
            best = sample

    if best is None:
        raise NoValidSamples("no valid samples to estimate from")

    offset = best.clock_offset
    return SyncEstimate(
        server_time_at_capture=now_local + offset,
        offset_ms=offset,
        delay_ms=best.round_trip_delay,
        reliability=best.source_reliability,
        drift_rate_ms_per_ms=0.0,
        captured_at_local=now_local,
        source=best.source,
        sample_count=len(samples),
    )


class DriftTracker:
    """Tracks how fast the estimated offset changes between syncs.

    The rate is a plain two-point derivative of the last two offsets. It is
    not smoothed, so a single noisy synchronization moves it fully.
    """

    def __init__(self):
        self._stats = DriftStatistics()

    @property
    def statistics(self) -> DriftStatistics:
        """Copy of the current drift statistics."""
        return replace(self._stats)

    @property
    def confidence(self) -> float:
        return self._stats.confidence

    def update(self, new_offset_ms: float, now_local: float) -> DriftStatistics:
        """Record a new offset measured at ``now_local``.

        Returns:
            Copy of the updated statistics.
        """
        stats = self._stats
        if stats.sample_count > 0:
            elapsed = now_local - stats.last_sync_local
            if elapsed != 0:
                stats.drift_rate_ms_per_ms = (new_offset_ms - stats.last_offset_ms) / elapsed
        else:
            stats.drift_rate_ms_per_ms = 0.0

        stats.last_offset_ms = new_offset_ms
        stats.last_sync_local = now_local
        stats.sample_count += 1

        logger.debug(
            f"Drift: rate={stats.drift_rate_ms_per_ms:.6f}ms/ms "
            f"samples={stats.sample_count} confidence={stats.confidence:.1f}"
        )
        return replace(stats)

    def apply(self, estimate: SyncEstimate) -> SyncEstimate:
        """Fill in the drift rate and scale reliability by confidence."""
        return replace(
            estimate,
            drift_rate_ms_per_ms=self._stats.drift_rate_ms_per_ms,
            reliability=estimate.reliability * self._stats.confidence,
        )

    def reset(self):
        """Forget all drift history."""
        self._stats = DriftStatistics()
