"""
typedrpc — Request pipeline
===========================

Turns a raw transport request into a dispatch-ready ``ApiRequest``.

Stages, strictly in this order:
1. body decode           → req.args / req.decode_failed (multipart: skipped)
2. context attach        → req.server / res.server
3. addressing resolution → req.rpc_path or req.pre_check_error
4. registry lookup       → req.registration (absence reported at dispatch)
5. user middleware       → may inspect/mutate the request or answer it
6. schema validation     → req.validation

No stage raises for a client error; failures are recorded on the request and
the dispatcher reports the first one in priority order. Each stage sees the
mutations of the stages before it (resolution sees the decoded args, the
validator sees args with the hidden path field already removed).
"""
from __future__ import annotations

import logging
import typing as t

from .codec import CodecError
from .paths import resolve_request_path
from .protocol import ValidationResult

if t.TYPE_CHECKING:
    from .config import ServerConfig
    from .middleware import MiddlewareChain
    from .models import ApiRequest, ApiResponse
    from .registry import ProtocolRegistry

log = logging.getLogger("typedrpc.pipeline")


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------


def decode_body(req: "ApiRequest", res: "ApiResponse") -> None:
    if req.is_multipart:
        # uploads: the raw body is left for middleware to parse
        return
    try:
        req.args = res.codec.decode(req.raw_body)
    except CodecError as e:
        req.args = None
        req.decode_failed = True
        log.debug("body decode failed for %s: %s", req.path, e)


def attach_context(req: "ApiRequest", res: "ApiResponse", server: t.Any) -> None:
    req.server = server
    res.server = server


def resolve_addressing(req: "ApiRequest", config: "ServerConfig") -> None:
    if req.args is None:
        return
    resolution = resolve_request_path(
        req.path,
        req.args,
        hide_api_path=config.hide_api_path,
        url_root_path=config.url_root_path,
    )
    req.rpc_path = resolution.rpc_path
    req.pre_check_error = resolution.error


def lookup_protocol(req: "ApiRequest", registry: "ProtocolRegistry") -> None:
    if req.pre_check_error is not None:
        return
    req.registration = registry.lookup(req.rpc_path)


def validate_args(req: "ApiRequest", logger: logging.Logger) -> ValidationResult | None:
    """Run the entry's validator; skipped while any earlier failure is pending."""
    if req.args is None or req.pre_check_error is not None or req.registration is None:
        return None
    result = req.registration.validator.validate(req.args)
    req.validation = result
    if result.is_error:
        logger.warning("Invalid Request Parameter %s %s", req.rpc_path, result.reason)
    return result


# -----------------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------------


class RequestPipeline:
    def __init__(
        self,
        config: "ServerConfig",
        registry: "ProtocolRegistry",
        middleware: "MiddlewareChain",
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.middleware = middleware
        self.log = logger or log

    async def run(self, req: "ApiRequest", res: "ApiResponse", server: t.Any = None) -> None:
        decode_body(req, res)
        attach_context(req, res, server)
        resolve_addressing(req, self.config)
        lookup_protocol(req, self.registry)

        had_args = req.args is not None
        await self.middleware.run(req, res)
        if res.is_sent:
            return
        if not had_args and req.args is not None:
            # a middleware produced the args (e.g. multipart parsing)
            req.decode_failed = False
            resolve_addressing(req, self.config)
            lookup_protocol(req, self.registry)

        if req.registration is not None and req.pre_check_error is None:
            self.log.info(
                "[ApiReq] #%s %s %s %s",
                req.req_id,
                req.rpc_path,
                req.real_ip,
                req.args if self.config.log_request_detail else "",
            )
        validate_args(req, self.log)


__all__ = [
    "decode_body",
    "attach_context",
    "resolve_addressing",
    "lookup_protocol",
    "validate_args",
    "RequestPipeline",
]
