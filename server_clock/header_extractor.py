"""
Remote Time Header Extractor
============================

Probes an HTTP host and reads its clock from response headers.

A lightweight HEAD request is tried first; if its best header is not
trustworthy enough the probe falls back to a full GET. Any status below 500
is usable, since error pages still carry a ``Date`` header.
"""

import asyncio
import logging
from typing import Callable, Mapping, Optional

import aiohttp

from .config import HEAD_ACCEPT_RELIABILITY, MAX_REDIRECTS, PROBE_TIMEOUT_MS
from .errors import AccessDenied, HostUnresolvable, NotFound, ProbeError, ProbeTimeout
from .time_protocol import (
    FALLBACK_RELIABILITY,
    FALLBACK_SOURCE,
    ProbeResult,
    current_time_ms,
    format_http_date,
    parse_header_time,
)

logger = logging.getLogger(__name__)

# Priority order, with the base trust of each header
TIME_HEADERS = (
    ("x-timestamp", 0.95),
    ("date", 0.9),
    ("last-modified", 0.7),
)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

DAY_MS = 24 * 60 * 60 * 1000


def normalize_url(url: str) -> str:
    """Insert an ``https://`` scheme if the URL has none."""
    url = url.strip()
    if not url.lower().startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


def header_reliability(
    base: float,
    status: int,
    method: str,
    headers: Mapping[str, str],
    time_ms: float,
    now_ms: float,
) -> float:
    """Score one candidate header time in [0, 1]."""
    reliability = base
    if status == 200:
        reliability += 0.05
    if method == "HEAD":
        reliability += 0.05
    if "no-cache" in headers.get("cache-control", ""):
        reliability += 0.05

    diff = abs(time_ms - now_ms)
    if diff > DAY_MS:
        reliability *= 0.5
    if diff < 1000:
        reliability += 0.1

    return min(reliability, 1.0)


def extract_time(
    headers: Mapping[str, str],
    status: int,
    method: str,
    now_ms: float,
) -> ProbeResult:
    """Pick the most reliable time-bearing header.

    Falls back to the local capture time with minimal reliability when no
    header holds a valid date.
    """
    best: Optional[ProbeResult] = None
    for name, base in TIME_HEADERS:
        value = headers.get(name)
        time_ms = parse_header_time(value)
        if time_ms is None:
            continue
        reliability = header_reliability(base, status, method, headers, time_ms, now_ms)
        if best is None or reliability > best.reliability:
            best = ProbeResult(
                timestamp=value,
                source=name,
                reliability=reliability,
                method=method,
                status=status,
            )

    if best is None:
        best = ProbeResult(
            timestamp=format_http_date(now_ms),
            source=FALLBACK_SOURCE,
            reliability=FALLBACK_RELIABILITY,
            method=method,
            status=status,
        )
    return best


class HeaderTimeExtractor:
    """Reads remote time from HTTP response headers over aiohttp.

    Args:
        session:            Shared aiohttp client session.
        timeout_ms:         Hard timeout per request.
        max_redirects:      Redirect hop limit.
        accept_reliability: HEAD results at or above this skip the GET.
        clock:              Local clock in epoch ms.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout_ms: int = PROBE_TIMEOUT_MS,
        max_redirects: int = MAX_REDIRECTS,
        accept_reliability: float = HEAD_ACCEPT_RELIABILITY,
        clock: Callable[[], float] = current_time_ms,
    ):
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        self._max_redirects = max_redirects
        self._accept_reliability = accept_reliability
        self._clock = clock

    async def probe(self, url: str) -> ProbeResult:
        """Probe ``url`` (HEAD, then GET if needed) for its current time.

        Raises:
            ProbeError: or one of its subclasses, on transport failures.
        """
        url = normalize_url(url)

        head = await self._request(url, "HEAD")
        if head.reliability >= self._accept_reliability:
            return head

        logger.debug(
            f"HEAD {url}: {head.source} reliability={head.reliability:.2f}, trying GET"
        )
        return await self._request(url, "GET")

    async def _request(self, url: str, method: str) -> ProbeResult:
        try:
            async with self._session.request(
                method,
                url,
                timeout=self._timeout,
                allow_redirects=True,
                max_redirects=self._max_redirects,
                headers={"User-Agent": USER_AGENT},
            ) as response:
                status = response.status
                headers = response.headers
        except asyncio.TimeoutError as e:
            raise ProbeTimeout(f"{method} {url}: timed out") from e
        except aiohttp.ClientConnectorDNSError as e:
            raise HostUnresolvable(f"{method} {url}: {e}") from e
        except aiohttp.ClientError as e:
            raise ProbeError(f"{method} {url}: {e}") from e

        if status >= 500:
            raise ProbeError(f"{method} {url}: HTTP {status}")

        result = extract_time(headers, status, method, self._clock())
        if result.is_fallback:
            if status == 403:
                raise AccessDenied(f"{method} {url}: HTTP 403")
            if status == 404:
                raise NotFound(f"{method} {url}: HTTP 404")

        logger.debug(
            f"{method} {url}: HTTP {status} {result.source}={result.timestamp!r} "
            f"reliability={result.reliability:.2f}"
        )
        return result
