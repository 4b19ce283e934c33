"""
Configuration
=============

Tunable constants for sampling, caching and display. Defaults are the
reference values; the CLI maps its flags onto ``SyncConfig``.
"""

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

PROBE_TIMEOUT_MS = 2000
MAX_REDIRECTS = 5
SAMPLE_COUNT = 5
INTER_PROBE_DELAY_MS = 100
OUTLIER_STDDEV_LIMIT = 2.0
MIN_FILTER_POPULATION = 3
HEAD_ACCEPT_RELIABILITY = 0.8
CACHE_DURATION_MS = 60_000
RELIABILITY_DECAY_PER_READ = 0.95
TICK_INTERVAL_MS = 10
DISPLAY_RESOLUTION_MS = 10
RESYNC_THRESHOLD_MS = 1000
SYNC_INTERVAL_MS = 60_000
DEFAULT_TIMEZONE = "Asia/Seoul"
DEFAULT_STATE_PATH = Path.home() / ".server_clock" / "state.json"


@dataclass
class SyncConfig:
    """Settings shared by the collector, session and projector."""

    probe_timeout_ms: int = PROBE_TIMEOUT_MS
    max_redirects: int = MAX_REDIRECTS
    sample_count: int = SAMPLE_COUNT
    inter_probe_delay_ms: int = INTER_PROBE_DELAY_MS
    outlier_stddev_limit: float = OUTLIER_STDDEV_LIMIT
    head_accept_reliability: float = HEAD_ACCEPT_RELIABILITY
    cache_duration_ms: int = CACHE_DURATION_MS
    reliability_decay_per_read: float = RELIABILITY_DECAY_PER_READ
    tick_interval_ms: int = TICK_INTERVAL_MS
    display_resolution_ms: int = DISPLAY_RESOLUTION_MS
    resync_threshold_ms: float = RESYNC_THRESHOLD_MS
    sync_interval_ms: int = SYNC_INTERVAL_MS
    timezone: str = DEFAULT_TIMEZONE
    state_path: Optional[Path] = DEFAULT_STATE_PATH

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "SyncConfig":
        return cls(
            probe_timeout_ms=args.timeout_ms,
            sample_count=args.samples,
            cache_duration_ms=args.cache_ms,
            display_resolution_ms=args.resolution_ms,
            sync_interval_ms=args.sync_interval_ms,
            timezone=args.timezone,
            state_path=None if args.no_state else Path(args.state_file),
        )
