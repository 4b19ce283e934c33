"""
Time Protocol Module - Samples, Estimates and Header Times
==========================================================

Data model for HTTP-based clock synchronization.

FOUR-TIMESTAMP EXCHANGE (all values in ms since Unix epoch):
    T1  client send time      (local clock)
    T2  server receive time   (remote clock, optional)
    T3  server send time      (remote clock, optional)
    T4  client receive time   (local clock)

  Delay  = ((T4 - T1) - (T3 - T2)) / 2     falls back to (T4 - T1) / 2
  Offset = ((T2 - T1) + (T3 - T4)) / 2     remote minus local

A plain HTTP server only reports a single header time T, in which case
T2 = T3 = T.

HEADER TIMES:
    x-timestamp     custom header, highest trust
    date            standard RFC 7231 date, 1 s resolution
    last-modified   lowest trust
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from enum import Enum
from typing import Optional


# =================
# CONSTANTS
# =================

class SyncState(str, Enum):
    """Synchronization status shown next to the clock."""
    INITIAL = "initial"
    SYNCING = "syncing"
    SYNCHRONIZED = "synchronized"
    ERROR = "error"
    UNABLE_TO_CONNECT = "unable_to_connect"
    LOCAL = "local"


class CacheState(str, Enum):
    """Lifecycle of a cached estimate for one target."""
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


FALLBACK_SOURCE = "fallback"
FALLBACK_RELIABILITY = 0.1

# Numeric header values above this are epoch milliseconds, below are seconds
EPOCH_MS_THRESHOLD = 100_000_000_000

# Latest accepted header time; leaves a day of headroom for timezone shifts
MAX_EPOCH_MS = datetime(9999, 12, 30, tzinfo=timezone.utc).timestamp() * 1000

DRIFT_CONFIDENCE_SAMPLES = 10


# ===================
# UTILITY FUNCTIONS
# ===================

def current_time_ms() -> float:
    """Current time in milliseconds since Unix epoch."""
    return time.time() * 1000


def round_to(value: float, resolution: float) -> float:
    """Round ``value`` to the nearest multiple of ``resolution``."""
    if resolution <= 0:
        return value
    return round(value / resolution) * resolution


def parse_header_time(value: Optional[str]) -> Optional[float]:
    """Parse a time-bearing header value into epoch milliseconds.

    Accepts HTTP-dates (``Tue, 15 Nov 1994 08:12:31 GMT``), ISO-8601 strings
    and numeric epoch values in seconds or milliseconds. Times before the
    epoch or after ``MAX_EPOCH_MS`` are rejected.

    Returns:
        Epoch milliseconds, or None if the value is not a usable date.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None:
        if not math.isfinite(number):
            return None
        epoch_ms = number if number >= EPOCH_MS_THRESHOLD else number * 1000
        return epoch_ms if 0 < epoch_ms <= MAX_EPOCH_MS else None

    try:
        dt = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        dt = None
    if dt is None:
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        epoch_ms = dt.timestamp() * 1000
    except (OverflowError, ValueError):
        return None
    return epoch_ms if 0 < epoch_ms <= MAX_EPOCH_MS else None


def format_http_date(epoch_ms: float) -> str:
    """Format epoch milliseconds as an RFC 1123 HTTP-date."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return format_datetime(dt, usegmt=True)


# =================
# DATA CLASSES
# =================

@dataclass
class ProbeResult:
    """One answer from the remote time header extractor."""

    timestamp: str                   # Raw header value (parseable date)
    source: str                      # Header name, or "fallback"
    reliability: float               # 0.0 - 1.0
    method: str = "HEAD"
    status: int = 0
    server_receive_time: Optional[float] = None  # ms, remote clock
    server_send_time: Optional[float] = None     # ms, remote clock

    @property
    def timestamp_ms(self) -> Optional[float]:
        return parse_header_time(self.timestamp)

    @property
    def is_fallback(self) -> bool:
        """True if no real remote time signal was obtained."""
        return self.source == FALLBACK_SOURCE


@dataclass
class TimeSample:
    """A single probe round-trip, tagged with local send/receive times."""

    client_send_time: float                      # T1
    client_receive_time: float                   # T4
    server_receive_time: Optional[float] = None  # T2
    server_send_time: Optional[float] = None     # T3
    source_reliability: float = 0.0
    source: str = ""

    def _server_times(self) -> tuple[Optional[float], Optional[float]]:
        t2, t3 = self.server_receive_time, self.server_send_time
        if t2 is None:
            t2 = t3
        if t3 is None:
            t3 = t2
        return t2, t3

    @property
    def round_trip_delay(self) -> float:
        """One-way network delay estimate (ms).

        May be negative under asymmetric network paths; see ``low_quality``.
        """
        rtt = self.client_receive_time - self.client_send_time
        t2, t3 = self._server_times()
        if t2 is None:
            return rtt / 2
        return (rtt - (t3 - t2)) / 2

    @property
    def clock_offset(self) -> Optional[float]:
        """Remote minus local clock (ms), or None without server times."""
        t2, t3 = self._server_times()
        if t2 is None:
            return None
        return ((t2 - self.client_send_time) + (t3 - self.client_receive_time)) / 2

    @property
    def valid(self) -> bool:
        return self.clock_offset is not None

    @property
    def low_quality(self) -> bool:
        return self.round_trip_delay < 0

    def __str__(self) -> str:
        offset = self.clock_offset
        offset_str = f"{offset:.1f}ms" if offset is not None else "--"
        return (
            f"Sample[{self.source or '?'} offset={offset_str} "
            f"delay={self.round_trip_delay:.1f}ms rel={self.source_reliability:.2f}]"
        )


@dataclass(frozen=True)
class SyncEstimate:
    """Result of one synchronization cycle. Immutable; replaced on resync."""

    server_time_at_capture: float   # ms, remote clock
    offset_ms: float                # remote minus local
    delay_ms: float                 # one-way network delay
    reliability: float              # 0.0 - 1.0 composite
    drift_rate_ms_per_ms: float
    captured_at_local: float        # ms, local clock
    source: str = ""
    sample_count: int = 0

    def server_time(self, local_now: float) -> float:
        """Project remote time at ``local_now`` using the estimated offset."""
        return local_now + self.offset_ms


@dataclass
class DriftStatistics:
    """Running drift estimate for one synchronized target."""

    drift_rate_ms_per_ms: float = 0.0
    last_offset_ms: float = 0.0
    last_sync_local: float = 0.0
    sample_count: int = 0

    @property
    def confidence(self) -> float:
        return min(self.sample_count / DRIFT_CONFIDENCE_SAMPLES, 1.0)


@dataclass
class ClockProjection:
    """Per-tick corrected display time."""

    local_now: float
    display_time_ms: float
    observed_error_ms: float


@dataclass
class SyncStatus:
    state: SyncState = SyncState.INITIAL
    message: str = ""
    details: Optional[str] = None


@dataclass
class MonitorSnapshot:
    """Monitoring values relayed to observers at tick granularity."""

    display_time_ms: float
    offset_ms: float
    delay_ms: float
    drift_rate_ms_per_ms: float
    reliability: float
    observed_error_ms: float
    status: SyncStatus = field(default_factory=SyncStatus)
    target: str = ""
