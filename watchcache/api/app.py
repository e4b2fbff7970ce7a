"""FastAPI application factory for the metrics endpoint.

Usage::

    from watchcache.api.app import create_app

    app = create_app(sink=sink, cache=cache, reconciler=reconciler)

Routes:
    GET /metrics  -- Prometheus text exposition of the sink's registry.
    GET /healthz  -- Cache readiness and the last reconciliation tick.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from watchcache.observability.metrics import MetricsSink

_log = structlog.get_logger(component="api.app")


def create_app(
    sink: MetricsSink,
    cache: Any = None,
    reconciler: Any = None,
) -> FastAPI:
    """Create the metrics/health FastAPI application.

    Args:
        sink:       MetricsSink whose registry is exposed on ``/metrics``.
        cache:      Optional EndpointsCache, reported on ``/healthz``.
        reconciler: Optional Reconciler, its last tick is reported on ``/healthz``.
    """
    from watchcache import __version__

    app = FastAPI(
        title="watchcache-exporter",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.sink = sink
    app.state.cache = cache
    app.state.reconciler = reconciler

    @app.get("/metrics")
    async def metrics(request: Request) -> Response:
        payload, content_type = request.app.state.sink.render()
        return Response(content=payload, media_type=content_type)

    @app.get("/healthz")
    async def healthz(request: Request) -> JSONResponse:
        cache = request.app.state.cache
        reconciler = request.app.state.reconciler

        cache_ready = bool(cache.ready()) if cache is not None else False
        last = reconciler.last_result if reconciler is not None else None
        body: dict[str, object] = {
            "status": "ok" if cache_ready else "warming",
            "version": __version__,
            "cache_ready": cache_ready,
            "cache_size": len(cache) if cache is not None else 0,
            "ticks": reconciler.ticks if reconciler is not None else 0,
            "last_tick": last.to_dict() if last is not None else None,
        }
        return JSONResponse(status_code=200 if cache_ready else 503, content=body)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(status_code=500, content={"error": "INTERNAL_ERROR"})

    return app
