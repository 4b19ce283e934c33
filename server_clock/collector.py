"""
Sample Collector
================

Issues a batch of sequential probes against one target and tags each
answer with local send/receive times. Probes are never concurrent, since
parallel requests to the same host would distort the delay measurements.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from .config import INTER_PROBE_DELAY_MS, SAMPLE_COUNT
from .errors import NoValidSamples, ProbeError
from .time_protocol import ProbeResult, TimeSample, current_time_ms

logger = logging.getLogger(__name__)


class TimeExtractor(Protocol):
    async def probe(self, url: str) -> ProbeResult: ...


class SampleCollector:
    """Collects ``TimeSample`` batches from a time extractor.

    Args:
        extractor:            Anything with ``async probe(url) -> ProbeResult``.
        inter_probe_delay_ms: Pause between consecutive probes.
        clock:                Local clock in epoch ms.
        sleep:                Async sleep, in seconds.
    """

    def __init__(
        self,
        extractor: TimeExtractor,
        inter_probe_delay_ms: float = INTER_PROBE_DELAY_MS,
        clock: Callable[[], float] = current_time_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._extractor = extractor
        self._delay_s = inter_probe_delay_ms / 1000
        self._clock = clock
        self._sleep = sleep

    async def collect(self, target: str, sample_count: int = SAMPLE_COUNT) -> list[TimeSample]:
        """Probe ``target`` ``sample_count`` times, in order.

        Failed probes and probes without a real remote time are dropped.

        Raises:
            NoValidSamples: if no probe produced a usable sample.
        """
        samples: list[TimeSample] = []
        for i in range(sample_count):
            if i > 0 and self._delay_s > 0:
                await self._sleep(self._delay_s)

            t1 = self._clock()
            try:
                result = await self._extractor.probe(target)
            except ProbeError as e:
                logger.warning(f"Probe {i + 1}/{sample_count} dropped: {e.reason} ({e})")
                continue
            t4 = self._clock()

            sample = self._to_sample(result, t1, t4)
            if sample is None:
                logger.warning(
                    f"Probe {i + 1}/{sample_count} dropped: no usable time header"
                )
                continue
            if sample.low_quality:
                logger.debug(f"Probe {i + 1}/{sample_count} has negative delay: {sample}")
            samples.append(sample)

        if not samples:
            raise NoValidSamples(f"all {sample_count} probes to {target} failed")

        logger.debug(f"Collected {len(samples)}/{sample_count} samples from {target}")
        return samples

    @staticmethod
    def _to_sample(result: ProbeResult, t1: float, t4: float):
        if result.is_fallback:
            return None

        t2, t3 = result.server_receive_time, result.server_send_time
        if t2 is None and t3 is None:
            header_ms = result.timestamp_ms
            if header_ms is None:
                return None
            t2 = t3 = header_ms

        return TimeSample(
            client_send_time=t1,
            client_receive_time=t4,
            server_receive_time=t2,
            server_send_time=t3,
            source_reliability=result.reliability,
            source=result.source,
        )
