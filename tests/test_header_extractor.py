import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from server_clock.errors import AccessDenied, HostUnresolvable, NotFound, ProbeError, ProbeTimeout
from server_clock.header_extractor import (
    HeaderTimeExtractor,
    extract_time,
    header_reliability,
    normalize_url,
)
from server_clock.time_protocol import current_time_ms, format_http_date

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_700_000_000_000.0

# aiohttp adds a Date header unless one is set; an empty value suppresses it
NO_DATE = {"Date": ""}


def build_app(requests: list) -> web.Application:
    async def fresh_timestamp(request):
        requests.append((request.method, request.path))
        headers = dict(NO_DATE, **{"X-Timestamp": str(int(current_time_ms()))})
        return web.Response(text="ok", headers=headers)

    async def stale_head(request):
        requests.append((request.method, request.path))
        if request.method == "HEAD":
            old = format_http_date(current_time_ms() - 3 * DAY_MS)
            return web.Response(headers=dict(NO_DATE, **{"Last-Modified": old}))
        return web.Response(text="ok", headers=dict(NO_DATE, **{"X-Timestamp": str(int(current_time_ms()))}))

    async def no_headers(request):
        requests.append((request.method, request.path))
        return web.Response(text="ok", headers=NO_DATE)

    def status_page(status, headers):
        async def handler(request):
            requests.append((request.method, request.path))
            return web.Response(status=status, headers=headers)
        return handler

    async def slow(request):
        await asyncio.sleep(1.0)
        return web.Response(text="late")

    async def redirect(request):
        requests.append((request.method, request.path))
        raise web.HTTPFound("/fresh")

    async def loop(request):
        raise web.HTTPFound("/loop")

    app = web.Application()
    app.router.add_route("*", "/fresh", fresh_timestamp)
    app.router.add_route("*", "/stale-head", stale_head)
    app.router.add_route("*", "/none", no_headers)
    app.router.add_route("*", "/forbidden", status_page(403, NO_DATE))
    app.router.add_route("*", "/missing", status_page(404, NO_DATE))
    app.router.add_route("*", "/missing-dated", status_page(404, {}))
    app.router.add_route("*", "/broken", status_page(503, {}))
    app.router.add_route("*", "/slow", slow)
    app.router.add_route("*", "/redirect", redirect)
    app.router.add_route("*", "/loop", loop)
    return app


def probe(path: str, timeout_ms: int = 2000):
    """Run one extractor probe against a local test server."""
    requests = []

    async def scenario():
        server = TestServer(build_app(requests))
        await server.start_server()
        try:
            async with aiohttp.ClientSession() as http:
                extractor = HeaderTimeExtractor(http, timeout_ms=timeout_ms)
                return await extractor.probe(str(server.make_url(path)))
        finally:
            await server.close()

    return asyncio.run(scenario()), requests


def test_trusted_head_result_skips_get():
    result, requests = probe("/fresh")

    assert requests == [("HEAD", "/fresh")]
    assert result.method == "HEAD"
    assert result.source == "x-timestamp"
    assert result.reliability >= 0.95
    assert result.status == 200
    assert abs(result.timestamp_ms - current_time_ms()) < 5_000


def test_untrusted_head_falls_back_to_get():
    result, requests = probe("/stale-head")

    assert requests == [("HEAD", "/stale-head"), ("GET", "/stale-head")]
    assert result.method == "GET"
    assert result.source == "x-timestamp"


def test_default_date_header_is_used():
    # No explicit headers: aiohttp's own Date header is the only signal
    async def scenario():
        app = web.Application()

        async def plain(request):
            return web.Response(text="ok")

        app.router.add_route("*", "/", plain)
        server = TestServer(app)
        await server.start_server()
        try:
            async with aiohttp.ClientSession() as http:
                return await HeaderTimeExtractor(http).probe(str(server.make_url("/")))
        finally:
            await server.close()

    result = asyncio.run(scenario())
    assert result.source == "date"
    assert result.method == "HEAD"
    assert result.reliability == pytest.approx(1.0)


def test_no_time_headers_returns_fallback():
    result, requests = probe("/none")

    assert [method for method, _ in requests] == ["HEAD", "GET"]
    assert result.is_fallback
    assert result.reliability == 0.1


def test_redirects_are_followed():
    result, requests = probe("/redirect")

    assert requests[:2] == [("HEAD", "/redirect"), ("HEAD", "/fresh")]
    assert result.source == "x-timestamp"


def test_status_below_500_with_date_is_usable():
    result, _ = probe("/missing-dated")
    assert result.status == 404
    assert result.source == "date"


@pytest.mark.parametrize(
    "path, error, reason",
    [
        ("/forbidden", AccessDenied, "Access denied by server"),
        ("/missing", NotFound, "Server not found"),
    ],
)
def test_denied_and_missing_without_headers(path, error, reason):
    with pytest.raises(error) as excinfo:
        probe(path)
    assert excinfo.value.reason == reason


def test_server_error_is_a_probe_error():
    with pytest.raises(ProbeError) as excinfo:
        probe("/broken")
    assert type(excinfo.value) is ProbeError
    assert excinfo.value.reason == "Failed to fetch server time"


def test_too_many_redirects_is_a_probe_error():
    with pytest.raises(ProbeError):
        probe("/loop")


def test_timeout_maps_to_probe_timeout():
    with pytest.raises(ProbeTimeout) as excinfo:
        probe("/slow", timeout_ms=100)
    assert excinfo.value.reason == "Request timed out"


def test_unresolvable_host():
    async def scenario():
        async with aiohttp.ClientSession() as http:
            await HeaderTimeExtractor(http, timeout_ms=2000).probe("http://no-such-host.invalid/")

    with pytest.raises(HostUnresolvable) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.reason == "Could not resolve host"


class TestNormalizeUrl:
    def test_inserts_https(self):
        assert normalize_url("example.com") == "https://example.com"
        assert normalize_url("  example.com/path ") == "https://example.com/path"

    def test_keeps_existing_scheme(self):
        assert normalize_url("http://example.com") == "http://example.com"
        assert normalize_url("HTTPS://example.com") == "HTTPS://example.com"


class TestReliability:
    def test_adjustments(self):
        # date: 0.9 + 0.05 (200) + 0.05 (HEAD), 10 s away
        assert header_reliability(0.9, 200, "HEAD", {}, NOW_MS - 10_000, NOW_MS) == pytest.approx(1.0)
        assert header_reliability(0.7, 404, "GET", {}, NOW_MS - 10_000, NOW_MS) == pytest.approx(0.7)
        assert header_reliability(
            0.7, 404, "GET", {"cache-control": "no-cache, private"}, NOW_MS - 10_000, NOW_MS
        ) == pytest.approx(0.75)

    def test_close_times_gain_and_far_times_lose(self):
        assert header_reliability(0.7, 301, "GET", {}, NOW_MS + 200, NOW_MS) == pytest.approx(0.8)
        assert header_reliability(0.9, 301, "GET", {}, NOW_MS - 2 * DAY_MS, NOW_MS) == pytest.approx(0.45)

    def test_highest_score_wins_and_ties_keep_priority(self):
        headers = {
            "x-timestamp": str(int(NOW_MS - 2 * DAY_MS)),
            "date": format_http_date(NOW_MS),
            "last-modified": format_http_date(NOW_MS),
        }
        result = extract_time(headers, 200, "GET", NOW_MS)
        assert result.source == "date"
        assert result.reliability == pytest.approx(1.0)

        tied = {"date": format_http_date(NOW_MS), "x-timestamp": str(int(NOW_MS))}
        assert extract_time(tied, 200, "HEAD", NOW_MS).source == "x-timestamp"

    def test_invalid_headers_fall_back(self):
        result = extract_time({"date": "yesterday-ish"}, 200, "GET", NOW_MS)
        assert result.is_fallback
        assert result.reliability == 0.1
        assert result.timestamp_ms == NOW_MS
