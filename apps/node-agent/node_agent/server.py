"""
Health Server
=============

aiohttp application exposing:

  GET /         plain-text banner
  GET /health   HealthReport JSON, 200 when available, 503 otherwise

CORS is fully permissive; the report is meant to be read by dashboards on
other origins.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from aiohttp import web

from .health import compute_health
from .transport import InventoryTransport

log = logging.getLogger(__name__)

BANNER = "DStack Backend Health Monitor"


@dataclass(frozen=True)
class AppContext:
    """Read-only state shared by every request."""
    transport: InventoryTransport
    identity:  str
    location:  Optional[str] = None


CONTEXT_KEY = web.AppKey("context", AppContext)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin":  "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Headers": "*",
}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        return web.Response(status=204, headers=_CORS_HEADERS)
    try:
        resp = await handler(request)
    except web.HTTPException as e:
        e.headers.update(_CORS_HEADERS)
        raise
    resp.headers.update(_CORS_HEADERS)
    return resp


async def root_handler(request: web.Request) -> web.Response:
    return web.Response(text=BANNER)


async def health_handler(request: web.Request) -> web.Response:
    ctx    = request.app[CONTEXT_KEY]
    report = await compute_health(ctx.transport, ctx.identity, ctx.location)
    return web.json_response(report.to_dict(), status=report.http_status)


async def _close_transport(app: web.Application):
    await app[CONTEXT_KEY].transport.close()


def create_app(ctx: AppContext) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[CONTEXT_KEY] = ctx
    app.router.add_get("/", root_handler)
    app.router.add_get("/health", health_handler)
    app.on_cleanup.append(_close_transport)
    return app
