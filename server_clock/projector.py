"""
Live Clock Projector
====================

Turns the last synchronized offset into a smoothly advancing display time.

Each tick is a cheap, non-blocking read of the last fetched estimate:

    display = round(local_now + offset - external_correction, resolution)
    observed_error = |display - (local_now + offset)|

A large observed error schedules a background resync. Resyncs never block
ticks; while one is in flight the display keeps advancing from the last
good estimate.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from .config import SyncConfig
from .errors import SyncCancelled, SyncFailed
from .scheduler import RepeatingTask
from .sync_cache import SyncSession
from .time_protocol import (
    MAX_EPOCH_MS,
    ClockProjection,
    MonitorSnapshot,
    SyncEstimate,
    SyncState,
    SyncStatus,
    current_time_ms,
    round_to,
)

logger = logging.getLogger(__name__)


def timezone_offset_ms(tz_name: str, at_ms: float) -> float:
    """UTC offset of ``tz_name`` at epoch time ``at_ms``, in ms."""
    dt = datetime.fromtimestamp(at_ms / 1000, tz=ZoneInfo(tz_name))
    return dt.utcoffset().total_seconds() * 1000


def format_display(epoch_ms: float, tz_name: str) -> str:
    """Render epoch ms as ``HH:MM:SS.mmm`` wall time in ``tz_name``.

    Values outside the representable range are clamped, so rendering never
    fails on a bad offset.
    """
    if not math.isfinite(epoch_ms):
        epoch_ms = 0.0
    epoch_ms = min(max(epoch_ms, 0.0), MAX_EPOCH_MS)
    shifted = epoch_ms + timezone_offset_ms(tz_name, epoch_ms)
    dt = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=round(shifted))
    return dt.strftime("%H:%M:%S.%f")[:-3]


class LiveClockProjector:
    """Projects corrected server time at tick granularity.

    Args:
        session:               Synchronization session, or None for a purely
                               local clock.
        config:                Tick, display and resync settings.
        external_correction_ms: Additive correction subtracted from the
                               display time (e.g. reaction-time calibration).
        clock:                 Local clock in epoch ms.
    """

    def __init__(
        self,
        session: Optional[SyncSession],
        config: Optional[SyncConfig] = None,
        external_correction_ms: float = 0.0,
        clock: Callable[[], float] = current_time_ms,
    ):
        self._session = session
        self._config = config or SyncConfig()
        self.external_correction_ms = external_correction_ms
        self._clock = clock

        self._estimate: Optional[SyncEstimate] = None
        self._baseline_offset_ms = 0.0
        self._has_synced = False
        self._stopped = False

        self.status = SyncStatus()
        self.projection: Optional[ClockProjection] = None
        self._observers: list[Callable[[MonitorSnapshot], None]] = []

        self._ticker = RepeatingTask(self._config.tick_interval_ms, self.tick, name="clock-tick")
        self._resyncer = RepeatingTask(
            self._config.sync_interval_ms, self._periodic_resync, name="clock-resync"
        )
        self._resync_task: Optional[asyncio.Task] = None

    # ---- Properties ----------------------------------------------------------

    @property
    def target(self) -> str:
        return self._session.target if self._session else ""

    @property
    def estimate(self) -> Optional[SyncEstimate]:
        return self._estimate

    @property
    def offset_ms(self) -> float:
        if self._estimate is not None:
            return self._estimate.offset_ms
        return self._baseline_offset_ms

    @property
    def running(self) -> bool:
        return self._ticker.running

    def add_observer(self, callback: Callable[[MonitorSnapshot], None]):
        """Register a callback that receives a ``MonitorSnapshot`` every tick."""
        self._observers.append(callback)

    # ---- Lifecycle -----------------------------------------------------------

    def start(self):
        """Start ticking and, with a session, periodic resynchronization.

        Must be called from a running event loop.
        """
        self._stopped = False
        if self._session is None:
            self._fallback_to_local()
        else:
            warm = self._session.warm_offset()
            if warm is not None:
                self._baseline_offset_ms = warm
                logger.info(f"Warm start for {self.target}: offset={warm:.1f}ms")
            self.status = SyncStatus(SyncState.SYNCING, f"Synchronizing with {self.target}...")
            self._resyncer.start()
        self._ticker.start()

    def halt(self):
        """Halt all timers, leaving the session and its persisted state intact."""
        self._stopped = True
        self._ticker.cancel()
        self._resyncer.cancel()

    def stop(self):
        """Halt all timers, clear the session and fall back to the local clock."""
        self.halt()
        if self._session is not None:
            self._session.clear()
        self._fallback_to_local()

    def disconnect(self):
        """Stop synchronizing and keep ticking on the local clock."""
        self.stop()
        self._session = None
        self._stopped = False
        self._ticker.start()

    async def wait_closed(self):
        """Wait for timers and any background resync to finish."""
        await self._ticker.stop()
        await self._resyncer.stop()
        if self._resync_task is not None:
            try:
                await self._resync_task
            except asyncio.CancelledError:
                pass
            self._resync_task = None

    def _fallback_to_local(self):
        self._estimate = None
        self._baseline_offset_ms = 0.0
        self._has_synced = False
        self.status = SyncStatus(
            SyncState.LOCAL, f"Connected to standard time ({self._config.timezone})"
        )

    # ---- Ticks ---------------------------------------------------------------

    def tick(self) -> ClockProjection:
        """Compute this tick's projection and relay it to observers."""
        now = self._clock()
        offset = self.offset_ms
        expected = now + offset
        display = round_to(expected - self.external_correction_ms, self._config.display_resolution_ms)
        error = abs(display - expected)

        projection = ClockProjection(local_now=now, display_time_ms=display, observed_error_ms=error)
        self.projection = projection

        if error > self._config.resync_threshold_ms:
            self._trigger_resync()

        self._emit(projection)
        return projection

    def _emit(self, projection: ClockProjection):
        if not self._observers:
            return
        estimate = self._estimate
        snapshot = MonitorSnapshot(
            display_time_ms=projection.display_time_ms,
            offset_ms=self.offset_ms,
            delay_ms=estimate.delay_ms if estimate else 0.0,
            drift_rate_ms_per_ms=estimate.drift_rate_ms_per_ms if estimate else 0.0,
            reliability=estimate.reliability if estimate else 0.0,
            observed_error_ms=projection.observed_error_ms,
            status=self.status,
            target=self.target,
        )
        for callback in self._observers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Observer error: {e}")

    # ---- Resynchronization ---------------------------------------------------

    def _trigger_resync(self):
        if self._session is None or self._stopped:
            return
        if self._resync_task is not None and not self._resync_task.done():
            return
        logger.debug(f"Observed error above {self._config.resync_threshold_ms}ms, resyncing")
        self._resync_task = asyncio.create_task(self.resync())

    async def _periodic_resync(self):
        await self.resync(force=True)

    async def resync(self, force: bool = False) -> Optional[SyncEstimate]:
        """Fetch an estimate from the session and update status.

        Failures are logged and reflected in ``status``; they never raise.
        """
        session = self._session
        if session is None or self._stopped:
            return None

        if not self._has_synced or force:
            self.status = SyncStatus(SyncState.SYNCING, f"Synchronizing with {session.target}...")
        try:
            estimate = await session.get(force=force)
        except SyncCancelled:
            logger.debug(f"Resync for {session.target} cancelled")
            return None
        except SyncFailed as e:
            reason = getattr(e.__cause__, "reason", e.reason)
            if self._has_synced:
                logger.error(f"Resync failed, keeping last estimate: {e}")
                self.status = SyncStatus(SyncState.ERROR, "Time synchronization failed", reason)
            else:
                logger.error(f"Unable to connect: {e}")
                self.status = SyncStatus(
                    SyncState.UNABLE_TO_CONNECT, f"Unable to connect to {session.target}", reason
                )
            return None

        if self._stopped or session is not self._session:
            return None

        self._estimate = estimate
        self._has_synced = True
        self.status = SyncStatus(
            SyncState.SYNCHRONIZED,
            f"Connected to {session.target}",
            f"Offset: {estimate.offset_ms:.0f}ms, Delay: {estimate.delay_ms:.0f}ms",
        )
        return estimate
