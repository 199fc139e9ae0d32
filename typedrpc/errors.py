"""
Errors for typedrpc.

This module provides:
- The wire-visible error codes sent in error envelopes (`ErrorCode`).
- `TypedRpcError`, the exception a handler raises to send a message/info pair
  to the client verbatim.
- Configuration-time exceptions raised at startup (never at request time).
- `PreCheckError`, the value recorded on a request when addressing fails.
- An advisory HTTP status mapper for gateways.

Usage (inside a handler):
    from typedrpc.errors import TypedRpcError

    async def ApiLogin(req, res):
        if not ok:
            raise TypedRpcError("Wrong password", {"retry": 2})
        res.succ({"token": token})

Notes:
- `info` is forwarded untouched; keep it small and safe to expose.
- Anything that is not a `TypedRpcError` is treated as an unexpected failure
  and reduced to `UNHANDLED_API_ERROR` before it reaches the client.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List


# ───────────────────────────────────────────────────────────────────────────────
# Wire codes
# ───────────────────────────────────────────────────────────────────────────────

class ErrorCode(str, Enum):
    INVALID_REQ_BODY = "INVALID_REQ_BODY"
    INVALID_PATH = "INVALID_PATH"
    REQ_CANT_BE_RESOLVED = "REQ_CANT_BE_RESOLVED"
    PTL_NOT_FOUND = "PTL_NOT_FOUND"
    INVALID_REQ_PARAM = "INVALID_REQ_PARAM"
    UNHANDLED_API_ERROR = "UNHANDLED_API_ERROR"

    def __str__(self) -> str:
        return self.value


# Default client-visible messages
INVALID_REQ_BODY_MESSAGE = "Invalid Request Body"
INVALID_PATH_MESSAGE = "Invalid path"
CANT_BE_RESOLVED_MESSAGE = "Request cannot be resolved"
HIDDEN_PATH_EXPECTED_MESSAGE = "HideApiPath is enabled, set it to true too in your client config."
HIDDEN_PATH_UNEXPECTED_MESSAGE = "HideApiPath is disabled, set it to false too in your client config."
NOT_FOUND_MESSAGE = "404 Not Found"
INVALID_REQ_PARAM_MESSAGE = "Invalid Request Parameter"
UNHANDLED_MESSAGE = "Internal Server Error"


# ───────────────────────────────────────────────────────────────────────────────
# Handler-facing error
# ───────────────────────────────────────────────────────────────────────────────

class TypedRpcError(Exception):
    """
    Expected failure raised by a handler. `message` and `info` reach the
    client exactly as given.
    """

    def __init__(self, message: str, info: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.info = info

    def __repr__(self) -> str:
        return f"TypedRpcError({self.message!r}, info={self.info!r})"


# ───────────────────────────────────────────────────────────────────────────────
# Pipeline value
# ───────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PreCheckError:
    """Addressing failure recorded during resolution and reported at dispatch."""

    message: str
    code: ErrorCode

    def as_pair(self) -> tuple[str, str]:
        return self.message, self.code.value


# ───────────────────────────────────────────────────────────────────────────────
# Configuration-time errors (fatal, raised at startup)
# ───────────────────────────────────────────────────────────────────────────────

class ConfigurationError(Exception):
    """Invalid server configuration or protocol declaration."""


class ProtocolPathError(ConfigurationError):
    def __init__(self, filename: str, protocol_path: str, reason: str = "Protocol is not in the protocolPath") -> None:
        super().__init__(f"{reason} : {filename}")
        self.filename = filename
        self.protocol_path = protocol_path


class AutoImplementError(ConfigurationError):
    def __init__(self, problems: Iterable[str]) -> None:
        self.problems: List[str] = list(problems)
        lines = "\n".join(f"    {i + 1}. {p}" for i, p in enumerate(self.problems))
        super().__init__("Auto implement protocol failed:\n" + lines)


# ───────────────────────────────────────────────────────────────────────────────
# Helpers
# ───────────────────────────────────────────────────────────────────────────────

def http_status_hint(code: Any) -> int:
    """
    Advisory mapping from an error code to an HTTP status.
    Handler-defined codes (anything not in ErrorCode) map to 200 so typed
    errors keep travelling in a normal response.
    """
    try:
        code = ErrorCode(code)
    except ValueError:
        return 200
    if code in (ErrorCode.INVALID_REQ_BODY, ErrorCode.INVALID_REQ_PARAM, ErrorCode.REQ_CANT_BE_RESOLVED):
        return 400
    if code in (ErrorCode.INVALID_PATH, ErrorCode.PTL_NOT_FOUND):
        return 404
    if code == ErrorCode.UNHANDLED_API_ERROR:
        return 500
    return 200


__all__ = [
    "ErrorCode",
    "TypedRpcError",
    "PreCheckError",
    "ConfigurationError",
    "ProtocolPathError",
    "AutoImplementError",
    "http_status_hint",
    "INVALID_REQ_BODY_MESSAGE",
    "INVALID_PATH_MESSAGE",
    "CANT_BE_RESOLVED_MESSAGE",
    "HIDDEN_PATH_EXPECTED_MESSAGE",
    "HIDDEN_PATH_UNEXPECTED_MESSAGE",
    "NOT_FOUND_MESSAGE",
    "INVALID_REQ_PARAM_MESSAGE",
    "UNHANDLED_MESSAGE",
]
