"""
Server Clock Client
===================

Connects to a remote HTTP server, keeps its clock synchronized in the
background and projects a live corrected time for display.
"""

import logging
from typing import Callable, Optional

import aiohttp

from .collector import SampleCollector
from .config import SyncConfig
from .header_extractor import HeaderTimeExtractor, normalize_url
from .persistence import StateStore
from .projector import LiveClockProjector, format_display
from .stats import SyncStats
from .sync_cache import SyncSession
from .time_protocol import (
    DriftStatistics,
    MonitorSnapshot,
    SyncEstimate,
    SyncState,
    SyncStatus,
    current_time_ms,
)

logger = logging.getLogger(__name__)


class ServerClockClient:
    """Live clock synchronized to a remote server's HTTP headers.

    Handles:
      - Sampling the remote clock via HEAD/GET probes
      - Caching and drift-correcting the offset estimate
      - Ticking a corrected display time and relaying monitoring data

    Args:
        url:                   Target URL or bare host name.
        config:                Sampling, cache and display settings.
        on_tick:               Optional callback invoked with each snapshot.
        external_correction_ms: Additive display correction, in ms.
    """

    def __init__(
        self,
        url: str,
        config: Optional[SyncConfig] = None,
        on_tick: Optional[Callable[[MonitorSnapshot], None]] = None,
        external_correction_ms: float = 0.0,
    ):
        self.url = normalize_url(url) if url else ""
        self.config = config or SyncConfig()
        self.on_tick = on_tick
        self.external_correction_ms = external_correction_ms

        self._http: Optional[aiohttp.ClientSession] = None
        self._store = StateStore(self.config.state_path) if self.config.state_path else None
        self._session: Optional[SyncSession] = None
        self._projector: Optional[LiveClockProjector] = None

    # ---- Properties ----------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._session is not None and self._session.estimate is not None

    @property
    def status(self) -> SyncStatus:
        if self._projector is None:
            return SyncStatus()
        return self._projector.status

    @property
    def estimate(self) -> Optional[SyncEstimate]:
        """Last estimate fetched by the projector."""
        return self._projector.estimate if self._projector else None

    @property
    def drift(self) -> DriftStatistics:
        return self._session.drift if self._session else DriftStatistics()

    @property
    def stats(self) -> SyncStats:
        return self._session.stats if self._session else SyncStats()

    def server_time_ms(self, local_time_ms: Optional[float] = None) -> float:
        """Convert a local timestamp (default: now) to server time."""
        if local_time_ms is None:
            local_time_ms = current_time_ms()
        offset = self._projector.offset_ms if self._projector else 0.0
        return local_time_ms + offset

    def display(self) -> str:
        """Current corrected time as ``HH:MM:SS.mmm`` in the configured timezone."""
        if self._projector is None or self._projector.projection is None:
            return format_display(current_time_ms(), self.config.timezone)
        return format_display(self._projector.projection.display_time_ms, self.config.timezone)

    # ---- Connection lifecycle ------------------------------------------------

    async def connect(self) -> bool:
        """Start synchronizing and ticking.

        Returns:
            True if the first synchronization succeeded.
        """
        await self._shutdown()
        self._http = aiohttp.ClientSession()
        extractor = HeaderTimeExtractor(
            self._http,
            timeout_ms=self.config.probe_timeout_ms,
            max_redirects=self.config.max_redirects,
            accept_reliability=self.config.head_accept_reliability,
        )
        collector = SampleCollector(extractor, inter_probe_delay_ms=self.config.inter_probe_delay_ms)
        self._session = SyncSession(self.url, collector, self.config, store=self._store)

        self._projector = LiveClockProjector(
            self._session,
            self.config,
            external_correction_ms=self.external_correction_ms,
        )
        if self.on_tick:
            self._projector.add_observer(self.on_tick)
        self._projector.start()

        estimate = await self._projector.resync()
        if estimate is None:
            logger.error(f"Connect failed: {self.status.message} ({self.status.details})")
            return False
        logger.info(f"Connected: {self.url}")
        return True

    async def resync(self) -> Optional[SyncEstimate]:
        """Force a new probe batch now."""
        if self._projector is None:
            return None
        return await self._projector.resync(force=True)

    def start_local(self):
        """Tick on the local clock only, without any remote target."""
        if self._projector is None:
            self._projector = LiveClockProjector(None, self.config)
            if self.on_tick:
                self._projector.add_observer(self.on_tick)
        self._projector.start()

    def disconnect(self):
        """Clear all cached and persisted state and fall back to the local clock."""
        if self._projector is not None:
            self._projector.disconnect()
        elif self._store is not None:
            self._store.clear()
        self._session = None
        logger.info(f"Disconnected from {self.url or 'standard time'}")

    async def close(self):
        """Gracefully shut down the client.

        Persisted sync state is kept for the next warm start.
        """
        logger.info("Closing...")
        await self._shutdown()

    async def _shutdown(self):
        # Stop the current projector's timers and release the HTTP session
        if self._projector is not None:
            self._projector.halt()
            await self._projector.wait_closed()
            self._projector = None
        self._session = None
        if self._http is not None:
            await self._http.close()
            self._http = None

    async def __aenter__(self) -> "ServerClockClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc):
        await self.close()


async def fetch_server_time(url: str, config: Optional[SyncConfig] = None) -> SyncEstimate:
    """One-shot synchronization against ``url`` without a live clock.

    Raises:
        SyncFailed: if no usable sample could be collected.
    """
    config = config or SyncConfig()
    async with aiohttp.ClientSession() as http:
        extractor = HeaderTimeExtractor(
            http,
            timeout_ms=config.probe_timeout_ms,
            max_redirects=config.max_redirects,
            accept_reliability=config.head_accept_reliability,
        )
        collector = SampleCollector(extractor, inter_probe_delay_ms=config.inter_probe_delay_ms)
        session = SyncSession(normalize_url(url), collector, config)
        return await session.get()


def is_degraded(status: SyncStatus) -> bool:
    return status.state in (SyncState.ERROR, SyncState.UNABLE_TO_CONNECT)
