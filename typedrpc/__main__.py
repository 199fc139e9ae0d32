"""
Serve a protocol tree from the command line.

    python -m typedrpc --protocol-path ./protocol --api-path ./api --port 3000

Options not given on the command line come from the TYPEDRPC_* environment
(see typedrpc.config). Passing --api-path turns auto-implementation on.
"""
from __future__ import annotations

import argparse
import typing as t

from . import config as rpc_config
from .errors import ConfigurationError
from .server import RpcServer
from .version import __version__


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="typedrpc",
        description="Serve typed RPC protocols over HTTP.",
    )
    ap.add_argument("--version", action="version", version=f"typedrpc {__version__}")
    ap.add_argument("--protocol-path", help="Directory holding Ptl*.py protocol files")
    ap.add_argument("--api-path", help="Directory holding Api*.py handlers (enables auto-implement)")
    ap.add_argument("--host", help="Bind address")
    ap.add_argument("--port", type=int, help="Listen port")
    ap.add_argument("--url-root-path", help="URL prefix RPC paths are resolved under")
    ap.add_argument("--hide-api-path", action="store_true", default=None,
                    help="Read the RPC path from the __rpc_path__ body field")
    ap.add_argument("--binary", action="store_true", default=None,
                    help="CBOR transport instead of JSON")
    ap.add_argument("--metrics", action="store_true", default=None,
                    help="Expose Prometheus metrics")
    ap.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    return ap


def overrides_from_args(args: argparse.Namespace) -> dict[str, t.Any]:
    mapping = {
        "protocol_path": args.protocol_path,
        "api_path": args.api_path,
        "host": args.host,
        "default_port": args.port,
        "url_root_path": args.url_root_path,
        "hide_api_path": args.hide_api_path,
        "binary_transport": args.binary,
        "metrics_enabled": args.metrics,
        "log_level": args.log_level,
    }
    out = {k: v for k, v in mapping.items() if v is not None}
    if args.api_path:
        out["auto_implement"] = True
    return out


def main(argv: list[str] | None = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    try:
        server = RpcServer(rpc_config.load(**overrides_from_args(args)))
    except ConfigurationError as e:
        raise SystemExit(f"typedrpc: {e}") from e

    # Lazy import so the package is importable without uvicorn installed
    import uvicorn

    uvicorn.run(
        server.create_app(),
        host=server.config.host,
        port=server.config.default_port,
        log_level=server.config.log_level.lower(),
        workers=1,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
