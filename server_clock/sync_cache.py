"""
Synchronization Cache
=====================

One ``SyncSession`` per connected target. It owns the current estimate and
drift statistics, serves drift-corrected cached values inside the cache
window, and runs the full probe pipeline otherwise.

State machine:
    EMPTY --get--> FRESH --cached get--> STALE
    FRESH/STALE --window expired or forced get--> FRESH
    FRESH/STALE --window expired, no new sync yet--> EMPTY
    any --clear--> EMPTY
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional

from .clock_sync import DriftTracker, estimate_offset, filter_outliers
from .collector import SampleCollector
from .config import SyncConfig
from .errors import ServerClockError, SyncCancelled, SyncFailed
from .persistence import PersistedSync, StateStore
from .stats import SyncStats
from .time_protocol import CacheState, DriftStatistics, SyncEstimate, current_time_ms

logger = logging.getLogger(__name__)


class SyncSession:
    """Cached clock synchronization against a single target URL.

    At most one probe batch is in flight at any time; concurrent callers of
    ``get`` share its result.

    Args:
        target:    URL (or bare host) of the remote server.
        collector: Sample collector used for probe batches.
        config:    Sampling and cache settings.
        store:     Optional persisted warm-start state.
        clock:     Local clock in epoch ms.
    """

    def __init__(
        self,
        target: str,
        collector: SampleCollector,
        config: Optional[SyncConfig] = None,
        store: Optional[StateStore] = None,
        clock: Callable[[], float] = current_time_ms,
    ):
        self.target = target
        self._collector = collector
        self._config = config or SyncConfig()
        self._store = store
        self._clock = clock

        self._estimate: Optional[SyncEstimate] = None
        self._reads = 0
        self._drift = DriftTracker()
        self._inflight: Optional[asyncio.Task] = None
        self._generation = 0

        self.stats = SyncStats()
        self.batches = 0

    # ---- Properties ----------------------------------------------------------

    @property
    def state(self) -> CacheState:
        if self.estimate is None:
            return CacheState.EMPTY
        return CacheState.FRESH if self._reads == 0 else CacheState.STALE

    @property
    def estimate(self) -> Optional[SyncEstimate]:
        """Last synchronized estimate, without drift correction.

        None once the estimate has aged out of the cache window.
        """
        if self._estimate is None or not self._in_window(self._clock()):
            return None
        return self._estimate

    @property
    def drift(self) -> DriftStatistics:
        return self._drift.statistics

    @property
    def syncing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ---- Reads ---------------------------------------------------------------

    async def get(self, force: bool = False) -> SyncEstimate:
        """Return the current offset estimate.

        Inside the cache window the stored estimate is projected forward by
        the drift rate and its reliability decays per read. Otherwise, or
        with ``force``, a new synchronization runs.

        Raises:
            SyncFailed: if synchronization was needed and failed.
        """
        if not force and self._estimate is not None:
            now = self._clock()
            if self._in_window(now):
                return self._cached(now, now - self._estimate.captured_at_local)
        return await self._synchronize()

    def _in_window(self, now: float) -> bool:
        elapsed = now - self._estimate.captured_at_local
        return 0 <= elapsed < self._config.cache_duration_ms

    def _cached(self, now: float, elapsed: float) -> SyncEstimate:
        self._reads += 1
        self.stats.record_cache_hit()
        estimate = self._estimate
        offset = estimate.offset_ms + estimate.drift_rate_ms_per_ms * elapsed
        decay = self._config.reliability_decay_per_read ** self._reads
        return replace(
            estimate,
            server_time_at_capture=now + offset,
            offset_ms=offset,
            reliability=estimate.reliability * decay,
        )

    def warm_offset(self) -> Optional[float]:
        """Persisted offset for this target, if still inside the cache window."""
        if self._store is None:
            return None
        persisted = self._store.load()
        if persisted is None or persisted.target_url != self.target:
            return None
        age = self._clock() - persisted.sync_local_time
        if not 0 <= age < self._config.cache_duration_ms:
            return None
        return persisted.offset_ms

    # ---- Synchronization -----------------------------------------------------

    async def _synchronize(self) -> SyncEstimate:
        if self._inflight is None or self._inflight.done():
            task = asyncio.create_task(self._run_pipeline(self._generation))
            task.add_done_callback(self._on_pipeline_done)
            self._inflight = task
        return await asyncio.shield(self._inflight)

    def _on_pipeline_done(self, task: asyncio.Task):
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved; callers re-raise it themselves
            task.exception()

    async def _run_pipeline(self, generation: int) -> SyncEstimate:
        self.batches += 1
        logger.debug(f"Synchronizing with {self.target} (batch {self.batches})")
        try:
            samples = await self._collector.collect(self.target, self._config.sample_count)
            filtered = filter_outliers(samples, self._config.outlier_stddev_limit)
            now = self._clock()
            estimate = estimate_offset(filtered, now)
        except ServerClockError as e:
            self._check_generation(generation)
            self.stats.record_failure()
            raise SyncFailed(f"{self.target}: {e.reason}") from e
        except Exception as e:
            self._check_generation(generation)
            self.stats.record_failure()
            raise SyncFailed(f"{self.target}: {e}") from e

        self._check_generation(generation)

        self._drift.update(estimate.offset_ms, now)
        estimate = self._drift.apply(estimate)
        self._estimate = estimate
        self._reads = 0
        self.stats.record(estimate)

        if self._store is not None:
            await asyncio.to_thread(
                self._store.save,
                PersistedSync(
                    target_url=self.target,
                    sync_local_time=int(estimate.captured_at_local),
                    offset_ms=estimate.offset_ms,
                ),
            )
            if generation != self._generation:
                # Cleared while writing; the file must not outlive the clear
                await asyncio.to_thread(self._store.clear)
                self._check_generation(generation)

        logger.info(
            f"Synced {self.target}: offset={estimate.offset_ms:.1f}ms "
            f"delay={estimate.delay_ms:.1f}ms rel={estimate.reliability:.2f} "
            f"({estimate.sample_count} samples, {estimate.source})"
        )
        return estimate

    def _check_generation(self, generation: int):
        if generation != self._generation:
            self.stats.record_discarded()
            logger.info(f"Discarding synchronization result for cleared target {self.target}")
            raise SyncCancelled(f"{self.target}: cleared during synchronization")

    # ---- Reset ---------------------------------------------------------------

    def clear(self):
        """Drop the estimate, drift history and persisted state.

        A batch already in flight keeps running, but its result is discarded.
        """
        self._generation += 1
        self._estimate = None
        self._reads = 0
        self._drift.reset()
        self._inflight = None
        if self._store is not None:
            self._store.clear()
        logger.debug(f"Cleared synchronization cache for {self.target}")
