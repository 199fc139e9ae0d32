from __future__ import annotations

"""
Prometheus metrics for typedrpc servers.

- Counts API calls by RPC path and outcome (succ / error code).
- Records handler latency from pipeline entry to handler settlement.
- Exposes a scrape endpoint (text/plain; version=0.0.4) when enabled.

The server's default ``on_api_complete`` hook calls ``record_api_complete``;
subclasses overriding the hook should call ``super().on_api_complete(...)`` to
keep the numbers.

Usage
-----
from typedrpc.metrics import mount_metrics

app = server.create_app()      # mounts automatically when metrics_enabled
mount_metrics(app, "/metrics") # or by hand
"""

import os
import time
import typing as t

from fastapi import APIRouter, FastAPI
from prometheus_client import (CONTENT_TYPE_LATEST, REGISTRY,
                               CollectorRegistry, Counter, Histogram,
                               generate_latest)
from starlette.responses import Response

from .errors import ErrorCode

if t.TYPE_CHECKING:
    from .models import ApiRequest, ApiResponse

_BUILTIN_CODES = frozenset(c.value for c in ErrorCode)


def _registry() -> CollectorRegistry:
    mp_dir = os.getenv("PROMETHEUS_MULTIPROC_DIR")
    if mp_dir:
        # Multiprocess mode (several uvicorn workers); the process manager
        # must clear the dir on boot.
        from prometheus_client import multiprocess

        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        return registry
    return REGISTRY


REG = _registry()


API_CALLS = Counter(
    "typedrpc_api_calls_total",
    "Total API calls by RPC path and outcome.",
    ["path", "status", "code"],
    registry=REG,
)

API_LATENCY = Histogram(
    "typedrpc_api_duration_seconds",
    "API handler latency in seconds by RPC path.",
    ["path"],
    buckets=(0.001, 0.003, 0.0075, 0.015, 0.03, 0.06, 0.12, 0.25, 0.5, 1, 2, 5),
    registry=REG,
)


def record_api_complete(req: "ApiRequest", res: "ApiResponse") -> None:
    path = req.rpc_path or "-"
    env = res.envelope
    if env is None:
        # handler will answer later from a callback
        status, code = "pending", ""
    elif env.is_succ:
        status, code = "succ", ""
    else:
        info = env.error.info
        status = "error"
        code = info if isinstance(info, str) and info in _BUILTIN_CODES else "handler"
    API_CALLS.labels(path=path, status=status, code=code).inc()
    API_LATENCY.labels(path=path).observe(max(0.0, time.perf_counter() - req.received_at))


def _metrics_handler() -> Response:
    data = generate_latest(REG)
    media_type = (
        CONTENT_TYPE_LATEST.decode()
        if isinstance(CONTENT_TYPE_LATEST, (bytes, bytearray))
        else CONTENT_TYPE_LATEST
    )
    return Response(content=data, media_type=media_type)


def mount_metrics(app: FastAPI, path: str = "/metrics") -> None:
    """
    Mount GET <path> on the provided FastAPI app, ready for Prometheus to scrape.
    Must run before the catch-all RPC route is added.
    """
    router = APIRouter()
    router.add_api_route(path, _metrics_handler, methods=["GET"], include_in_schema=False)
    app.include_router(router)


__all__ = [
    "API_CALLS",
    "API_LATENCY",
    "record_api_complete",
    "mount_metrics",
]
