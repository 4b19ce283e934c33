"""Shared fakes for driving the synchronization pipeline without a network."""

import asyncio
from typing import Optional, Sequence

from server_clock.collector import SampleCollector
from server_clock.config import SyncConfig
from server_clock.errors import ProbeTimeout
from server_clock.sync_cache import SyncSession
from server_clock.time_protocol import ProbeResult

START_MS = 1_700_000_000_000.0


class FakeClock:
    def __init__(self, start: float = START_MS):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class RemoteClockExtractor:
    """Simulates a remote server whose clock is ``offset_ms`` ahead.

    Each probe advances the fake clock by the next round-trip time; the
    server stamps its time halfway through the round trip.

    Args:
        clock:     Shared fake local clock.
        offset_ms: Remote minus local.
        rtts:      Round-trip times, cycled per probe.
        fail:      Probe indices (0-based) that raise ``ProbeTimeout``.
    """

    def __init__(
        self,
        clock: FakeClock,
        offset_ms: float = 0.0,
        rtts: Sequence[float] = (100.0,),
        fail: Sequence[int] = (),
        reliability: float = 0.95,
        source: str = "x-timestamp",
    ):
        self.clock = clock
        self.offset_ms = offset_ms
        self.rtts = list(rtts)
        self.fail = set(fail)
        self.reliability = reliability
        self.source = source
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None

    async def probe(self, url: str) -> ProbeResult:
        index = self.calls
        self.calls += 1
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)

        rtt = self.rtts[index % len(self.rtts)]
        if index in self.fail:
            self.clock.advance(rtt)
            raise ProbeTimeout(f"probe {index} timed out")

        self.clock.advance(rtt / 2)
        server_ms = self.clock.now + self.offset_ms
        self.clock.advance(rtt / 2)
        return ProbeResult(
            timestamp=str(int(server_ms)),
            source=self.source,
            reliability=self.reliability,
        )


def make_session(
    clock: FakeClock,
    extractor,
    store=None,
    **config_overrides,
) -> SyncSession:
    config_overrides.setdefault("state_path", None)
    config = SyncConfig(inter_probe_delay_ms=0, **config_overrides)
    collector = SampleCollector(extractor, inter_probe_delay_ms=0, clock=clock)
    return SyncSession("https://example.com", collector, config, store=store, clock=clock)
