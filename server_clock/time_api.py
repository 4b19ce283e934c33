"""
Time API
========

Small aiohttp web app exposing the header extractor over HTTP:

    GET /api/fetch-server-time?url=example.com

Success (200):
    {"serverTime": "<header value>", "source": "date", "reliability": 0.95,
     "method": "HEAD", "T2": <route receive ms>, "T3": <route respond ms>}

Errors:
    400 {"error": "No URL provided"}
    504/502/403/404/500 {"error": "<short reason>"}
"""

import logging
from typing import Callable, Optional
from urllib.parse import unquote

import aiohttp
from aiohttp import web

from .config import SyncConfig
from .errors import ProbeError
from .header_extractor import HeaderTimeExtractor, normalize_url
from .time_protocol import current_time_ms

logger = logging.getLogger(__name__)

EXTRACTOR_KEY = web.AppKey("extractor", HeaderTimeExtractor)
HTTP_SESSION_KEY = web.AppKey("http_session", aiohttp.ClientSession)

routes = web.RouteTableDef()


@routes.get("/api/fetch-server-time")
async def fetch_server_time(request: web.Request) -> web.Response:
    t2 = current_time_ms()
    url = request.query.get("url")
    logger.info(f"Received request for server time: url={url!r}")

    if not url:
        logger.warning("No URL provided")
        return web.json_response({"error": "No URL provided"}, status=400)

    url = normalize_url(unquote(url))
    extractor = request.app[EXTRACTOR_KEY]
    try:
        result = await extractor.probe(url)
    except ProbeError as e:
        logger.error(f"Error fetching server time for {url}: {e}")
        return web.json_response({"error": e.reason}, status=e.http_status)
    t3 = current_time_ms()

    return web.json_response(
        {
            "serverTime": result.timestamp,
            "source": result.source,
            "reliability": result.reliability,
            "method": result.method,
            "T2": int(t2),
            "T3": int(t3),
        }
    )


def create_app(
    config: Optional[SyncConfig] = None,
    extractor_factory: Optional[Callable[[aiohttp.ClientSession], HeaderTimeExtractor]] = None,
) -> web.Application:
    """Build the time API application.

    Args:
        config:            Probe settings.
        extractor_factory: Builds the extractor from the app's client session.
    """
    config = config or SyncConfig()
    app = web.Application()
    app.add_routes(routes)

    async def http_session_ctx(app: web.Application):
        http = aiohttp.ClientSession()
        app[HTTP_SESSION_KEY] = http
        if extractor_factory is not None:
            app[EXTRACTOR_KEY] = extractor_factory(http)
        else:
            app[EXTRACTOR_KEY] = HeaderTimeExtractor(
                http,
                timeout_ms=config.probe_timeout_ms,
                max_redirects=config.max_redirects,
                accept_reliability=config.head_accept_reliability,
            )
        yield
        await http.close()

    app.cleanup_ctx.append(http_session_ctx)
    return app
