from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import RPC_PATH_FIELD

_LOG = logging.getLogger("typedrpc.access")


def _dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _get_client_ip(request: Request) -> str:
    # X-Forwarded-For (first hop) is informational only.
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    client = request.client
    return client.host if client else "-"


def _maybe_utf8(b: bytes, limit: int) -> str:
    if limit <= 0 or not b:
        return ""
    sample = b[:limit]
    try:
        s = sample.decode("utf-8", errors="strict")
        if len(b) > limit:
            s += "…"
        return s
    except UnicodeDecodeError:
        hx = sample.hex()
        if len(b) > limit:
            hx += "…"
        return f"0x{hx}"


def _detect_rpc_path(path: str, body: bytes, url_root_path: str) -> Optional[str]:
    """Best-effort: the hidden path field of a JSON body, else the URL below the root."""
    if body and RPC_PATH_FIELD.encode() in body:
        try:
            obj = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            obj = None
        if isinstance(obj, dict) and isinstance(obj.get(RPC_PATH_FIELD), str):
            return obj[RPC_PATH_FIELD]
    if path.startswith(url_root_path):
        return "/" + path[len(url_root_path):]
    return None


def _ensure_request_id(request: Request) -> str:
    if request.headers.get("x-request-id"):
        return request.headers["x-request-id"]
    rid = request.headers.get("x-trace-id") or uuid.uuid4().hex
    # downstream handlers read the id from the header
    request.scope["headers"] = [*request.scope["headers"], (b"x-request-id", rid.encode("latin-1"))]
    return rid


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Structured access logging with tracing IDs.

    - Emits a single JSON line per HTTP request at INFO level:
      {
        "event":"http_request",
        "req_id":"…",
        "method":"POST",
        "path":"/api/user/Login",
        "status":200,
        "duration_ms":12.34,
        "bytes_sent":123,
        "client_ip":"203.0.113.5",
        "user_agent":"…",
        "rpc_path":"/user/Login",
        "body_sample":"{…}" | "0x…"
      }

    - Adds `X-Request-ID` response header (and uses incoming header if provided).
    - Reads the request body; Starlette replays it to downstream handlers.
    - `request_body_sample` controls how many bytes of the request body are logged (default: 0).
    """

    def __init__(self, app, request_body_sample: int = 0, url_root_path: str = "/") -> None:  # type: ignore[no-untyped-def]
        super().__init__(app)
        self.request_body_sample = max(0, int(request_body_sample))
        self.url_root_path = url_root_path

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        req_id = _ensure_request_id(request)
        start = time.perf_counter()

        method = request.method
        path = request.url.path
        client_ip = _get_client_ip(request)
        ua = request.headers.get("user-agent", "-")

        body = await request.body()
        rpc_path = _detect_rpc_path(path, body, self.url_root_path)

        status = 500
        bytes_sent: Optional[int] = None
        exc_info: Optional[BaseException] = None
        try:
            response: Response = await call_next(request)
            status = int(response.status_code)
            response.headers["X-Request-ID"] = req_id
            cl = response.headers.get("content-length")
            if cl and cl.isdigit():
                bytes_sent = int(cl)
            return response
        except Exception as e:
            exc_info = e
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0

            record: Dict[str, Any] = {
                "event": "http_request",
                "req_id": req_id,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 3),
                "bytes_sent": bytes_sent,
                "client_ip": client_ip,
                "user_agent": ua,
            }
            if rpc_path:
                record["rpc_path"] = rpc_path
            if self.request_body_sample > 0:
                record["body_sample"] = _maybe_utf8(body, self.request_body_sample)

            line = _dumps(record)
            if exc_info is None and 100 <= status < 400:
                _LOG.info(line)
            elif exc_info is None:
                _LOG.warning(line)
            else:
                _LOG.error(line, exc_info=exc_info)


__all__ = ["LoggingMiddleware"]
