"""
Server Clock Package
====================

Live clock synchronized to a remote server's HTTP time headers.

Modules:
    time_protocol    - Samples, estimates and header time parsing
    header_extractor - HEAD/GET probing of time-bearing headers
    collector        - Sequential probe batches
    clock_sync       - Outlier filter, offset estimator, drift tracker
    sync_cache       - Per-target cached synchronization session
    projector        - Live corrected display time
    scheduler        - Cancellable repeating tasks
    persistence      - Warm-start state file
    stats            - Synchronization statistics
    client           - Client orchestration
    time_api         - HTTP endpoint exposing the extractor
"""

from .time_protocol import (
    CacheState,
    ClockProjection,
    DriftStatistics,
    MonitorSnapshot,
    ProbeResult,
    SyncEstimate,
    SyncState,
    SyncStatus,
    TimeSample,
    current_time_ms,
    parse_header_time,
)
from .errors import (
    AccessDenied,
    HostUnresolvable,
    NoValidSamples,
    NotFound,
    ProbeError,
    ProbeTimeout,
    ServerClockError,
    SyncCancelled,
    SyncFailed,
)
from .config import SyncConfig
from .header_extractor import HeaderTimeExtractor
from .collector import SampleCollector
from .clock_sync import DriftTracker, estimate_offset, filter_outliers
from .sync_cache import SyncSession
from .projector import LiveClockProjector, format_display
from .scheduler import RepeatingTask
from .persistence import StateStore
from .stats import SyncStats
from .client import ServerClockClient, fetch_server_time

__all__ = [
    "CacheState",
    "ClockProjection",
    "DriftStatistics",
    "MonitorSnapshot",
    "ProbeResult",
    "SyncEstimate",
    "SyncState",
    "SyncStatus",
    "TimeSample",
    "current_time_ms",
    "parse_header_time",
    "AccessDenied",
    "HostUnresolvable",
    "NoValidSamples",
    "NotFound",
    "ProbeError",
    "ProbeTimeout",
    "ServerClockError",
    "SyncCancelled",
    "SyncFailed",
    "SyncConfig",
    "HeaderTimeExtractor",
    "SampleCollector",
    "DriftTracker",
    "estimate_offset",
    "filter_outliers",
    "SyncSession",
    "LiveClockProjector",
    "format_display",
    "RepeatingTask",
    "StateStore",
    "SyncStats",
    "ServerClockClient",
    "fetch_server_time",
]
