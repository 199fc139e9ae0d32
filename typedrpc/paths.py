"""
Path resolution in both directions.

- protocol → canonical RPC path:   /srv/app/protocol/user/PtlLogin.py → /user/Login
- request  → RPC path, under one of two addressing modes:
    * path-addressed: the URL path below ``url_root_path``
    * field-addressed ("hidden path"): the reserved ``__rpc_path__`` field of
      the decoded body, removed before the handler sees the args

The protocol side depends only on (filename, root), with symlinks resolved
when the literal paths disagree. Request-side
failures are returned as a ``PreCheckError`` value rather than raised; the
dispatcher decides when to report them.
"""
from __future__ import annotations

import importlib.util
import os
from dataclasses import dataclass
from typing import Any, Optional

from .config import RPC_PATH_FIELD
from .errors import (CANT_BE_RESOLVED_MESSAGE, HIDDEN_PATH_EXPECTED_MESSAGE,
                     HIDDEN_PATH_UNEXPECTED_MESSAGE, INVALID_PATH_MESSAGE,
                     ErrorCode, PreCheckError, ProtocolPathError)
from .protocol import PROTOCOL_PREFIX, Protocol

SOURCE_SUFFIX = ".py"


def _source_filename(filename: str) -> str:
    if filename.endswith(".pyc") and "__pycache__" in filename:
        try:
            return importlib.util.source_from_cache(filename)
        except ValueError:
            return filename
    return filename


def _relative(filename: str, protocol_root: str) -> Optional[str]:
    """`filename` below `protocol_root` as "/a/b/PtlC", or None when it is not below it."""
    root = protocol_root.rstrip("/\\")
    if not filename.startswith(root) or not filename.endswith(SOURCE_SUFFIX):
        return None
    rel = filename[len(root):len(filename) - len(SOURCE_SUFFIX)].replace("\\", "/")
    if not rel.startswith("/"):
        # /srv/protocol2/PtlX.py is not below /srv/protocol
        return None
    return rel


def protocol_url(filename: str, protocol_root: str) -> str:
    """
    Canonical RPC path for a protocol file, without a trailing slash.

    /root/a/b/PtlC.py -> /a/b/C
    """
    filename = _source_filename(filename)
    rel = _relative(filename, protocol_root)
    if rel is None:
        # symlinked roots: compare the real locations
        rel = _relative(os.path.realpath(filename), os.path.realpath(protocol_root))
    if rel is None:
        raise ProtocolPathError(filename, protocol_root)

    head, _, last = rel.rpartition("/")
    if not last.startswith(PROTOCOL_PREFIX) or len(last) == len(PROTOCOL_PREFIX):
        raise ProtocolPathError(
            filename, protocol_root, reason=f"Protocol filename must look like {PROTOCOL_PREFIX}<Name>.py"
        )
    return f"{head}/{last[len(PROTOCOL_PREFIX):]}"


def resolve(protocol: Protocol, protocol_root: str) -> str:
    return protocol_url(protocol.filename, protocol_root)


@dataclass(frozen=True)
class Resolution:
    rpc_path: Optional[str] = None
    error: Optional[PreCheckError] = None


def resolve_request_path(
    url_path: str,
    args: Any,
    *,
    hide_api_path: bool,
    url_root_path: str,
) -> Resolution:
    """
    Extract the requested RPC path. In field-addressed mode the reserved field
    is popped from ``args`` (which must then be a dict).
    """
    has_field = isinstance(args, dict) and RPC_PATH_FIELD in args

    if hide_api_path:
        if not has_field or args[RPC_PATH_FIELD] is None:
            return Resolution(error=PreCheckError(HIDDEN_PATH_EXPECTED_MESSAGE, ErrorCode.REQ_CANT_BE_RESOLVED))
        rpc_path = args.pop(RPC_PATH_FIELD)
        if not isinstance(rpc_path, str):
            rpc_path = None
    else:
        if has_field:
            return Resolution(error=PreCheckError(HIDDEN_PATH_UNEXPECTED_MESSAGE, ErrorCode.REQ_CANT_BE_RESOLVED))
        if not url_path.startswith(url_root_path):
            return Resolution(error=PreCheckError(INVALID_PATH_MESSAGE, ErrorCode.INVALID_PATH))
        rpc_path = "/" + url_path[len(url_root_path):]

    if not rpc_path or rpc_path == "/":
        return Resolution(error=PreCheckError(CANT_BE_RESOLVED_MESSAGE, ErrorCode.REQ_CANT_BE_RESOLVED))
    return Resolution(rpc_path=rpc_path)


__all__ = [
    "protocol_url",
    "resolve",
    "Resolution",
    "resolve_request_path",
]
