"""
Entry point for `python -m server_clock`.

Usage:
    python -m server_clock [--url example.com] [--reaction-error-ms 120]
    python -m server_clock --url example.com --once
    python -m server_clock --serve 8080
"""

import argparse
import asyncio
import logging
import signal
import sys

from aiohttp import web

from .client import ServerClockClient, fetch_server_time, is_degraded
from .config import (
    CACHE_DURATION_MS,
    DEFAULT_STATE_PATH,
    DEFAULT_TIMEZONE,
    DISPLAY_RESOLUTION_MS,
    PROBE_TIMEOUT_MS,
    SAMPLE_COUNT,
    SYNC_INTERVAL_MS,
    SyncConfig,
)
from .errors import SyncFailed
from .time_api import create_app

logger = logging.getLogger("ServerClock")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Server Clock - live HTTP time synchronization")
    parser.add_argument("--url", "-u", default=None, help="Server to synchronize with")
    parser.add_argument("--reaction-error-ms", type=float, default=0.0,
                        help="Reaction-time correction subtracted from the display")
    parser.add_argument("--samples", type=int, default=SAMPLE_COUNT)
    parser.add_argument("--timeout-ms", type=int, default=PROBE_TIMEOUT_MS)
    parser.add_argument("--cache-ms", type=int, default=CACHE_DURATION_MS)
    parser.add_argument("--sync-interval-ms", type=int, default=SYNC_INTERVAL_MS)
    parser.add_argument("--resolution-ms", type=int, default=DISPLAY_RESOLUTION_MS)
    parser.add_argument("--timezone", default=DEFAULT_TIMEZONE)
    parser.add_argument("--state-file", default=str(DEFAULT_STATE_PATH))
    parser.add_argument("--no-state", action="store_true", help="Do not persist sync state")
    parser.add_argument("--refresh", type=float, default=0.1,
                        help="Terminal redraw interval in seconds")
    parser.add_argument("--once", action="store_true", help="Synchronize once and exit")
    parser.add_argument("--serve", type=int, default=None, metavar="PORT",
                        help="Serve the time API instead of running a clock")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


async def run_once(args, config: SyncConfig) -> int:
    try:
        estimate = await fetch_server_time(args.url, config)
    except SyncFailed as e:
        print(f"Sync failed: {e}")
        return 1
    print(f"Offset:      {estimate.offset_ms:.1f} ms")
    print(f"Delay:       {estimate.delay_ms:.1f} ms")
    print(f"Reliability: {estimate.reliability:.2f} ({estimate.source})")
    return 0


async def run_clock(args, config: SyncConfig) -> int:
    client = ServerClockClient(
        args.url or "",
        config=config,
        external_correction_ms=args.reaction_error_ms,
    )

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        if args.url:
            if not await client.connect():
                print(f"Unable to connect: {client.status.details or client.status.message}")
        else:
            client.start_local()

        async def stats_printer():
            while not shutdown.is_set():
                await asyncio.sleep(5.0)
                logger.info(f"Stats: {client.stats}")

        task = asyncio.create_task(stats_printer())
        while not shutdown.is_set():
            status = client.status
            marker = "!" if is_degraded(status) else " "
            sys.stdout.write(f"\r{client.display()} {marker} [{status.state.value}] {status.message}   ")
            sys.stdout.flush()
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=args.refresh)
            except asyncio.TimeoutError:
                pass
        task.cancel()
        print()
    finally:
        await client.close()

    return 0


def serve(args, config: SyncConfig) -> int:
    web.run_app(create_app(config), port=args.serve)
    return 0


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    config = SyncConfig.from_args(args)
    if args.serve is not None:
        sys.exit(serve(args, config))

    if args.once:
        if not args.url:
            print("--once requires --url")
            sys.exit(2)
        runner = run_once(args, config)
    else:
        runner = run_clock(args, config)

    try:
        sys.exit(asyncio.run(runner))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
