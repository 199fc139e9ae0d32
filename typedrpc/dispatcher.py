"""
typedrpc — Dispatcher
=====================

Reports pending pipeline failures or runs the bound handler, then fires the
completion hook.

Pre-dispatch checks, first match wins:
  (a) no args (body undecodable or never provided) → 400 Invalid Request Body
  (b) addressing pre-check error                   → that error
  (c) no registration for the path                 → server.on_ptl_not_found
  (d) validation failure                           → INVALID_REQ_PARAM

Handler outcomes:
  - returns (having answered now or arranging to answer later) → nothing more
  - raises TypedRpcError → message/info forwarded verbatim
  - raises anything else → server.on_unhandled_api_error (sanitized)

``server.on_api_complete`` then fires exactly once per handler invocation;
errors it raises are logged and never touch the response.
"""
from __future__ import annotations

import inspect
import typing as t

from .errors import (INVALID_REQ_BODY_MESSAGE, INVALID_REQ_PARAM_MESSAGE,
                     ErrorCode, TypedRpcError)

if t.TYPE_CHECKING:
    from .models import ApiRequest, ApiResponse


async def _maybe_await(x: t.Any) -> t.Any:
    if inspect.isawaitable(x):
        return await x
    return x


async def pre_dispatch_error(server: t.Any, req: "ApiRequest", res: "ApiResponse") -> bool:
    """Answer the request if a pipeline stage failed. Returns True when it did."""
    if req.args is None:
        server.log.error("Invalid Request Body %s", req.path)
        res.error(INVALID_REQ_BODY_MESSAGE, ErrorCode.INVALID_REQ_BODY.value, status_code=400)
        return True

    if req.pre_check_error is not None:
        res.error(*req.pre_check_error.as_pair())
        return True

    if req.registration is None:
        await _maybe_await(server.on_ptl_not_found(req, res))
        return True

    if req.validation is not None and req.validation.is_error:
        reason = (
            req.validation.reason
            if server.config.show_param_invalid_reason
            else INVALID_REQ_PARAM_MESSAGE
        )
        res.error(reason, ErrorCode.INVALID_REQ_PARAM.value)
        return True

    return False


async def dispatch(server: t.Any, req: "ApiRequest", res: "ApiResponse") -> None:
    if res.is_sent or await pre_dispatch_error(server, req, res):
        return

    assert req.registration is not None
    try:
        await _maybe_await(req.registration.handler(req, res))
    except TypedRpcError as e:
        res.error(e.message, e.info)
    except Exception as e:
        await _maybe_await(server.on_unhandled_api_error(e, req, res))

    try:
        await _maybe_await(server.on_api_complete(req, res))
    except Exception:
        server.log.exception("on_api_complete failed for %s", req.rpc_path)


__all__ = ["pre_dispatch_error", "dispatch"]
