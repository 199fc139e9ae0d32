"""
typedrpc server configuration.

This module centralizes tunables for an RPC server:
- where protocol declarations (and, optionally, handler modules) live
- URL root and addressing mode (path in URL vs hidden in the body)
- validation-failure disclosure and request logging
- transport encoding (JSON text vs CBOR binary)
- host/port, CORS, access log, metrics

Environment variables (examples):
  TYPEDRPC_PROTOCOL_PATH=/srv/app/protocol
  TYPEDRPC_API_PATH=/srv/app/api
  TYPEDRPC_AUTO_IMPLEMENT=true
  TYPEDRPC_URL_ROOT_PATH=/api/
  TYPEDRPC_HIDE_API_PATH=false
  TYPEDRPC_SHOW_PARAM_INVALID_REASON=true
  TYPEDRPC_LOG_REQUEST_DETAIL=false
  TYPEDRPC_BINARY_TRANSPORT=false
  TYPEDRPC_HOST=0.0.0.0
  TYPEDRPC_PORT=3000
  TYPEDRPC_LOG_LEVEL=INFO
  TYPEDRPC_CORS_ORIGINS=["http://localhost:5173"]
  TYPEDRPC_METRICS_ENABLED=true

Notes
- JSON-like env values accept either JSON or a comma-separated list.
- Paths beginning with ~ are expanded.
- Explicit keyword overrides win over the environment.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, List, Optional

from .errors import ConfigurationError

ENV_PREFIX = "TYPEDRPC_"

# Reserved top-level field carrying the RPC path in field-addressed mode
RPC_PATH_FIELD = "__rpc_path__"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(ENV_PREFIX + name)
    return v if v is not None else default


def _env_bool(name: str, default: bool) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    """
    Parse JSON array or comma-separated string into a list of strings.
    """
    v = _env(name)
    if v is None or v.strip() == "":
        return list(default)
    s = v.strip()
    if s.startswith("[") and s.endswith("]"):
        try:
            parsed = json.loads(s)
            if isinstance(parsed, list):
                return [str(x) for x in parsed]
        except json.JSONDecodeError:
            pass
    return [item.strip() for item in s.split(",") if item.strip()]


def _expand_dir(path: Optional[str]) -> Optional[str]:
    if not path:
        return path
    return str(Path(path).expanduser().resolve())


@dataclass(frozen=True)
class ServerConfig:
    protocol_path: str = ""
    api_path: Optional[str] = None
    auto_implement: bool = False
    url_root_path: str = "/"
    hide_api_path: bool = False
    show_param_invalid_reason: bool = True
    log_request_detail: bool = False
    binary_transport: bool = False
    host: str = "127.0.0.1"
    default_port: int = 3000
    log_level: str = "INFO"
    cors_allow_origins: List[str] = field(default_factory=list)
    access_log: bool = True
    access_log_body_sample: int = 0
    metrics_enabled: bool = False
    metrics_path: str = "/metrics"
    error_http_status: bool = False

    @property
    def media_type(self) -> str:
        return "application/cbor" if self.binary_transport else "application/json"

    def normalized(self) -> "ServerConfig":
        """
        Return a checked copy: protocol_path is required, directories are
        absolute, and url_root_path starts and ends with '/'.
        """
        if not self.protocol_path:
            raise ConfigurationError("protocol_path is required")
        if self.auto_implement and not self.api_path:
            raise ConfigurationError("Must set api_path when auto_implement is enabled")

        root = self.url_root_path or "/"
        if not root.startswith("/"):
            root = "/" + root
        if not root.endswith("/"):
            root += "/"

        return replace(
            self,
            protocol_path=_expand_dir(self.protocol_path) or "",
            api_path=_expand_dir(self.api_path),
            url_root_path=root,
            log_level=(self.log_level or "INFO").upper(),
        )


def load(base: Optional[ServerConfig] = None, **overrides: Any) -> ServerConfig:
    """
    Build a ServerConfig from environment variables with sensible defaults,
    or start from `base` when given (the environment is then not read).
    Keyword overrides (same names as the dataclass fields) take precedence.
    """
    cfg = base if base is not None else ServerConfig(
        protocol_path=_env("PROTOCOL_PATH", "") or "",
        api_path=_env("API_PATH"),
        auto_implement=_env_bool("AUTO_IMPLEMENT", False),
        url_root_path=_env("URL_ROOT_PATH", "/") or "/",
        hide_api_path=_env_bool("HIDE_API_PATH", False),
        show_param_invalid_reason=_env_bool("SHOW_PARAM_INVALID_REASON", True),
        log_request_detail=_env_bool("LOG_REQUEST_DETAIL", False),
        binary_transport=_env_bool("BINARY_TRANSPORT", False),
        host=_env("HOST", "127.0.0.1") or "127.0.0.1",
        default_port=_env_int("PORT", 3000),
        log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        cors_allow_origins=_env_list("CORS_ORIGINS", []),
        access_log=_env_bool("ACCESS_LOG", True),
        access_log_body_sample=_env_int("ACCESS_LOG_BODY_SAMPLE", 0),
        metrics_enabled=_env_bool("METRICS_ENABLED", False),
        metrics_path=_env("METRICS_PATH", "/metrics") or "/metrics",
        error_http_status=_env_bool("ERROR_HTTP_STATUS", False),
    )
    if overrides:
        known = {f.name for f in fields(ServerConfig)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config option(s): {', '.join(unknown)}")
        cfg = replace(cfg, **overrides)
    return cfg


__all__ = [
    "ENV_PREFIX",
    "RPC_PATH_FIELD",
    "ServerConfig",
    "load",
]
