"""
typedrpc server facade.

`RpcServer` owns the protocol registry, the user middleware chain and the
request pipeline, and exposes them over HTTP:

- implement() / api() bind a protocol to its handler
- use() / get() / post() add middleware run before validation
- handle() serves one call without any HTTP framework
- create_app() builds the FastAPI app, start() / stop() run it under uvicorn
"""
from __future__ import annotations

import asyncio
import logging
import typing as t

from fastapi import FastAPI, Request, Response

from . import config as rpc_config
from . import metrics as rpc_metrics
from . import version as rpc_version
from .codec import codec_for
from .dispatcher import _maybe_await, dispatch
from .errors import (NOT_FOUND_MESSAGE, UNHANDLED_MESSAGE, ErrorCode,
                     TypedRpcError, http_status_hint)
from .middleware import MiddlewareChain, RouterHandler, apply_middleware
from .models import ApiRequest, ApiResponse, HttpResult
from .pipeline import RequestPipeline
from .protocol import Protocol
from .registry import Handler, ProtocolRegistry, Registration

# -----------------------------------------------------------------------------
# Logger
# -----------------------------------------------------------------------------
log = logging.getLogger("typedrpc.server")

RPC_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


class RpcServer:
    """
    Typed RPC server: a protocol registry, a request pipeline and a transport.

        server = RpcServer(protocol_path="./protocol")
        server.implement(PtlHello, ApiHello)
        await server.start(3000)

    The hooks ``on_ptl_not_found``, ``on_unhandled_api_error`` and
    ``on_api_complete`` may be overridden in a subclass or replaced on the
    instance.
    """

    def __init__(
        self,
        config: rpc_config.ServerConfig | None = None,
        *,
        logger: logging.Logger | None = None,
        **overrides: t.Any,
    ) -> None:
        self.config = rpc_config.load(config, **overrides).normalized()
        self.log = logger or log
        self.codec = codec_for(self.config.binary_transport)
        self.registry = ProtocolRegistry(self.config.protocol_path, logger=self.log)
        self.middleware = MiddlewareChain()
        self.pipeline = RequestPipeline(self.config, self.registry, self.middleware, logger=self.log)
        self._uvicorn: t.Any = None
        self._serve_task: asyncio.Task[t.Any] | None = None

        if self.config.auto_implement:
            from .autoimpl import auto_implement

            self.log.info("Start auto implement protocols...")
            auto_implement(self, self.config.protocol_path, t.cast(str, self.config.api_path))
            self.log.info("Auto implement protocols succ: %d", len(self.registry))

    # ------------------------------------------------------------------ registry

    def implement(self, protocol: Protocol, handler: Handler) -> Registration:
        return self.registry.register(protocol, handler)

    def api(self, protocol: Protocol) -> t.Callable[[Handler], Handler]:
        """Decorator form of ``implement``."""

        def deco(fn: Handler) -> Handler:
            self.implement(protocol, fn)
            return fn

        return deco

    # ---------------------------------------------------------------- middleware

    def _add_middleware(
        self,
        handler_or_path: RouterHandler | str,
        handler: RouterHandler | None,
        methods: list[str] | None,
    ) -> None:
        if isinstance(handler_or_path, str):
            if handler is None:
                raise TypeError("middleware handler is required when a path is given")
            self.middleware.add(handler, path=handler_or_path, methods=methods)
        else:
            self.middleware.add(handler_or_path, methods=methods)

    def use(self, handler_or_path: RouterHandler | str, handler: RouterHandler | None = None) -> None:
        self._add_middleware(handler_or_path, handler, None)

    def get(self, handler_or_path: RouterHandler | str, handler: RouterHandler | None = None) -> None:
        self._add_middleware(handler_or_path, handler, ["GET"])

    def post(self, handler_or_path: RouterHandler | str, handler: RouterHandler | None = None) -> None:
        self._add_middleware(handler_or_path, handler, ["POST"])

    # --------------------------------------------------------------------- hooks

    def on_ptl_not_found(self, req: ApiRequest, res: ApiResponse) -> None:
        res.error(NOT_FOUND_MESSAGE, ErrorCode.PTL_NOT_FOUND.value)

    def on_unhandled_api_error(self, err: BaseException, req: ApiRequest, res: ApiResponse) -> None:
        self.log.error(
            "[ApiErr] #%s %s %r", req.req_id, req.rpc_path, req.args, exc_info=err
        )
        res.error(UNHANDLED_MESSAGE, ErrorCode.UNHANDLED_API_ERROR.value)

    def on_api_complete(self, req: ApiRequest, res: ApiResponse) -> None:
        if self.config.metrics_enabled:
            rpc_metrics.record_api_complete(req, res)

    # ------------------------------------------------------------------ requests

    async def _fail(self, err: BaseException, req: ApiRequest, res: ApiResponse) -> None:
        try:
            await _maybe_await(self.on_unhandled_api_error(err, req, res))
        except Exception:
            self.log.exception("on_unhandled_api_error failed for %s", req.rpc_path)
        if not res.is_sent:
            res.error(UNHANDLED_MESSAGE, ErrorCode.UNHANDLED_API_ERROR.value)

    async def handle(
        self,
        method: str,
        path: str,
        headers: t.Mapping[str, str] | None = None,
        body: bytes = b"",
        client: tuple[str, int] | None = None,
    ) -> HttpResult:
        """
        Serve one call independent of the HTTP framework: run the pipeline,
        dispatch, wait for the handler to answer and encode the envelope.
        """
        hdrs = {k.lower(): v for k, v in (headers or {}).items()}
        req = ApiRequest(method=method.upper(), path=path, headers=hdrs, raw_body=body, client=client)
        if hdrs.get("x-request-id"):
            req.req_id = hdrs["x-request-id"]
        res = ApiResponse(self.codec, logger=self.log)

        try:
            await self.pipeline.run(req, res, self)
        except TypedRpcError as e:
            res.error(e.message, e.info)
        except Exception as e:
            await self._fail(e, req, res)

        if not res.is_sent:
            try:
                await dispatch(self, req, res)
            except Exception as e:
                await self._fail(e, req, res)

        envelope = await res.wait()
        if self.config.error_http_status and not envelope.is_succ and res.status_code == 200:
            res.status_code = http_status_hint(envelope.error.info)
        res.headers.setdefault("X-Request-ID", req.req_id)
        try:
            return res.render()
        except Exception:
            # payload the transport codec cannot encode
            self.log.exception("[ApiErr] #%s %s response encode failed", req.req_id, req.rpc_path)
            fallback = ApiResponse(self.codec, logger=self.log)
            fallback.error(UNHANDLED_MESSAGE, ErrorCode.UNHANDLED_API_ERROR.value)
            if self.config.error_http_status:
                fallback.status_code = http_status_hint(ErrorCode.UNHANDLED_API_ERROR)
            fallback.headers.update(res.headers)
            return fallback.render()

    # ----------------------------------------------------------------- transport

    def create_app(self) -> FastAPI:
        """
        Build the FastAPI app: HTTP middleware, optional /metrics, and one
        catch-all route feeding every call into ``handle``.
        """
        if not logging.getLogger().handlers:
            logging.basicConfig(
                level=getattr(logging, self.config.log_level, logging.INFO),
                format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            )

        app = FastAPI(
            title="typedrpc",
            version=rpc_version.__version__,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        app.state.rpc_server = self
        apply_middleware(app, self.config)

        if self.config.metrics_enabled:
            rpc_metrics.mount_metrics(app, self.config.metrics_path)

        async def rpc_endpoint(request: Request) -> Response:
            body = await request.body()
            client = (request.client.host, request.client.port) if request.client else None
            result = await self.handle(
                request.method, request.url.path, dict(request.headers), body, client
            )
            return Response(
                content=result.body,
                status_code=result.status_code,
                media_type=result.media_type,
                headers=result.headers,
            )

        app.add_api_route(
            "/{full_path:path}", rpc_endpoint, methods=RPC_METHODS, include_in_schema=False
        )
        return app

    async def start(self, port: int | None = None) -> None:
        """Listen on ``port`` (default from config); returns once the socket is bound."""
        if self._uvicorn is not None:
            raise RuntimeError("Server already started")

        # Lazy import so the module is importable in tests without uvicorn installed
        import uvicorn

        port = self.config.default_port if port is None else port
        server = uvicorn.Server(
            uvicorn.Config(
                self.create_app(),
                host=self.config.host,
                port=port,
                log_level=self.config.log_level.lower(),
            )
        )
        self._uvicorn = server
        self._serve_task = asyncio.ensure_future(server.serve())

        while not server.started:
            if self._serve_task.done():
                self._uvicorn, task, self._serve_task = None, self._serve_task, None
                try:
                    task.result()
                except SystemExit as e:
                    raise RuntimeError(f"Port {port} could not be bound") from e
                raise RuntimeError(f"Server on port {port} exited during startup")
            await asyncio.sleep(0.01)
        self.log.info("Server started at %s:%s", self.config.host, port)

    async def stop(self) -> None:
        if self._uvicorn is None:
            return
        self._uvicorn.should_exit = True
        task, self._uvicorn, self._serve_task = self._serve_task, None, None
        if task is not None:
            await task
        self.log.info("Server stopped")


__all__ = ["RpcServer"]
