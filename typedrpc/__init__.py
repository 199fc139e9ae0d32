"""
typedrpc: a typed RPC server.

Exposes:
- RpcServer: registry, request pipeline and HTTP transport
- define_protocol / Protocol: protocol declarations
- TypedRpcError: the error a handler raises to answer with message + info
- __version__
"""

from .config import ServerConfig
from .errors import ConfigurationError, ErrorCode, TypedRpcError
from .models import ApiRequest, ApiResponse
from .protocol import Protocol, define_protocol
from .server import RpcServer
from .version import __version__

__all__ = [
    "__version__",
    "RpcServer",
    "ServerConfig",
    "Protocol",
    "define_protocol",
    "ApiRequest",
    "ApiResponse",
    "TypedRpcError",
    "ErrorCode",
    "ConfigurationError",
]
