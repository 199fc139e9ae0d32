"""
Test utilities for typedrpc.

Usage in tests:
    from typedrpc.tests import call_api, new_test_client

    def test_hello():
        client, server = new_test_client()
        data = call_api(client, "/Hello", {"name": "world"})
        assert data["res"] == {"reply": "Hello, world!"}

Fixture protocols live in ``fixtures/protocol`` and their handlers in
``fixtures/api`` (the layout auto-implementation expects).
"""
from __future__ import annotations

import typing as t
from pathlib import Path

from fastapi.testclient import TestClient

from typedrpc.config import ServerConfig
from typedrpc.server import RpcServer

FIXTURES = Path(__file__).resolve().parent / "fixtures"
PROTOCOL_PATH = FIXTURES / "protocol"
API_PATH = FIXTURES / "api"


def make_server(**overrides: t.Any) -> RpcServer:
    """
    Server rooted at the fixture protocols, quiet and independent of the
    TYPEDRPC_* environment. Nothing is registered.
    """
    overrides.setdefault("protocol_path", str(PROTOCOL_PATH))
    overrides.setdefault("access_log", False)
    return RpcServer(ServerConfig(), **overrides)


def hello_server(**overrides: t.Any) -> RpcServer:
    """make_server() with the Hello and user/Login fixtures implemented."""
    from typedrpc.tests.fixtures.api.ApiHello import ApiHello
    from typedrpc.tests.fixtures.api.user.ApiLogin import ApiLogin
    from typedrpc.tests.fixtures.protocol.PtlHello import PtlHello
    from typedrpc.tests.fixtures.protocol.user.PtlLogin import PtlLogin

    server = make_server(**overrides)
    server.implement(PtlHello, ApiHello)
    server.implement(PtlLogin, ApiLogin)
    return server


def new_test_client(server: RpcServer | None = None, **overrides: t.Any) -> tuple[TestClient, RpcServer]:
    """
    TestClient bound to a fresh app. Builds a hello_server() when no server
    is given. Returns (client, server).
    """
    server = server or hello_server(**overrides)
    return TestClient(server.create_app()), server


def call_api(
    client: TestClient,
    path: str,
    args: t.Any | None = None,
    *,
    expect_succ: bool | None = None,
    status_code: int = 200,
) -> dict:
    """
    POST ``args`` as JSON to ``path`` and return the decoded envelope.
    ``expect_succ`` asserts the envelope's isSucc when given.
    """
    resp = client.post(path, json=args if args is not None else {})
    assert resp.status_code == status_code, f"HTTP {resp.status_code}: {resp.text}"
    data = resp.json()
    if expect_succ is not None:
        assert data["isSucc"] is expect_succ, f"unexpected envelope {data}"
    return data


__all__ = [
    "FIXTURES",
    "PROTOCOL_PATH",
    "API_PATH",
    "make_server",
    "hello_server",
    "new_test_client",
    "call_api",
]
