"""
typedrpc — Middleware
=====================

Two kinds of middleware live here:

1) RPC middleware (``MiddlewareChain``): user hooks registered through
   ``RpcServer.use()/get()/post()``. They run inside the request pipeline,
   after addressing resolution and registry lookup and *before* schema
   validation, so they must not assume the args are valid. Each hook is
   ``fn(req, res)``, sync or async, optionally scoped by URL path prefix and
   HTTP method. A hook that writes the response ends the pipeline.

2) HTTP middleware (``apply_middleware(app, config)``): the Starlette stack
   installed on the ASGI app (structured access logging, CORS).

Order of HTTP installation:
1) Logging → captures timings and status for everything downstream.
2) CORS → outermost, so preflight/headers are added even for rejections.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, FrozenSet, List, Optional

if TYPE_CHECKING:
    from fastapi import FastAPI  # pragma: no cover

    from ..config import ServerConfig  # pragma: no cover
    from ..models import ApiRequest, ApiResponse  # pragma: no cover

__all__ = [
    "RouterHandler",
    "Middleware",
    "MiddlewareChain",
    "apply_middleware",
    "LoggingMiddleware",
]

RouterHandler = Callable[["ApiRequest", "ApiResponse"], Any]


def __getattr__(name: str):  # pragma: no cover - thin shim
    if name == "LoggingMiddleware":
        from .logging import LoggingMiddleware
        return LoggingMiddleware
    raise AttributeError(name)


@dataclass(frozen=True)
class Middleware:
    handler: RouterHandler
    path: Optional[str] = None
    methods: Optional[FrozenSet[str]] = None

    def matches(self, req: "ApiRequest") -> bool:
        if self.methods is not None and req.method.upper() not in self.methods:
            return False
        if self.path is None:
            return True
        prefix = self.path.rstrip("/")
        if prefix == "":
            return True
        # URL path, or the resolved RPC path when it travels in the body
        for candidate in (req.path, req.rpc_path):
            if candidate and (candidate == prefix or candidate.startswith(prefix + "/")):
                return True
        return False


class MiddlewareChain:
    """Ordered user hooks run between registry lookup and validation."""

    def __init__(self) -> None:
        self._items: List[Middleware] = []

    def add(self, handler: RouterHandler, path: Optional[str] = None, methods: Optional[List[str]] = None) -> None:
        if not callable(handler):
            raise TypeError(f"middleware must be callable, got {handler!r}")
        if path is not None and not path.startswith("/"):
            path = "/" + path
        m = frozenset(x.upper() for x in methods) if methods else None
        self._items.append(Middleware(handler=handler, path=path, methods=m))

    def __len__(self) -> int:
        return len(self._items)

    async def run(self, req: "ApiRequest", res: "ApiResponse") -> None:
        """Run matching hooks in order; stop as soon as one writes the response."""
        for item in self._items:
            if res.is_sent:
                return
            if not item.matches(req):
                continue
            out = item.handler(req, res)
            if inspect.isawaitable(out):
                await out


def apply_middleware(app: "FastAPI", config: "ServerConfig") -> None:
    """
    Install the standard HTTP middleware stack on a FastAPI app.

    Example
    -------
    >>> from fastapi import FastAPI
    >>> from typedrpc.config import load
    >>> app = FastAPI()
    >>> apply_middleware(app, load(protocol_path="/srv/protocol").normalized())
    """
    from starlette.middleware.cors import CORSMiddleware

    from .logging import LoggingMiddleware

    if config.access_log:
        app.add_middleware(
            LoggingMiddleware,
            request_body_sample=config.access_log_body_sample,
            url_root_path=config.url_root_path,
        )

    if config.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(config.cors_allow_origins),
            allow_credentials=False,
            allow_methods=["POST", "GET", "OPTIONS"],
            allow_headers=["*"],
            max_age=3600,
        )
