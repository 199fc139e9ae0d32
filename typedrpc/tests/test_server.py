import logging

import cbor2
import pytest

from typedrpc.config import RPC_PATH_FIELD
from typedrpc.errors import (CANT_BE_RESOLVED_MESSAGE, HIDDEN_PATH_EXPECTED_MESSAGE,
                             INVALID_REQ_PARAM_MESSAGE, TypedRpcError)
from typedrpc.metrics import REG
from typedrpc.server import RpcServer
from typedrpc.tests import call_api, hello_server, make_server, new_test_client


def test_hello_world():
    client, _ = new_test_client()
    data = call_api(client, "/Hello", {"name": "world"}, expect_succ=True)
    assert data == {"isSucc": True, "res": {"reply": "Hello, world!"}}


def test_hello_defaults_name():
    client, _ = new_test_client()
    data = call_api(client, "/Hello", {}, expect_succ=True)
    assert data["res"]["reply"] == "Hello, world!"


def test_nested_protocol_path():
    client, _ = new_test_client()
    data = call_api(client, "/user/Login", {"username": "ann", "password": "secret"}, expect_succ=True)
    assert data["res"] == {"token": "tok-ann"}


def test_untyped_error_is_sanitized(caplog):
    client, _ = new_test_client()
    with caplog.at_level(logging.ERROR, logger="typedrpc.server"):
        data = call_api(client, "/Hello", {"name": "Error"}, expect_succ=False)
    assert data["error"] == {"message": "Internal Server Error", "info": "UNHANDLED_API_ERROR"}
    assert "RuntimeError" in caplog.text


def test_typed_error_is_forwarded_verbatim():
    client, _ = new_test_client()
    data = call_api(client, "/Hello", {"name": "TsrpcError"}, expect_succ=False)
    assert data["error"] == {"message": "TsrpcError", "info": "TsrpcError"}

    data = call_api(client, "/user/Login", {"username": "ann", "password": "x"}, expect_succ=False)
    assert data["error"] == {"message": "Wrong password", "info": {"retry": True}}


def test_deferred_answer_is_delivered():
    client, _ = new_test_client()
    data = call_api(client, "/Hello", {"name": "Delay"}, expect_succ=True)
    assert data["res"] == {"reply": "Hello, Delay!"}


def test_unknown_path_is_not_found():
    client, _ = new_test_client()
    data = call_api(client, "/Nope", {}, expect_succ=False)
    assert data["error"] == {"message": "404 Not Found", "info": "PTL_NOT_FOUND"}


def test_url_outside_root_is_invalid_path():
    client, _ = new_test_client(url_root_path="/api/")
    assert call_api(client, "/api/Hello", {"name": "a"}, expect_succ=True)["res"]["reply"] == "Hello, a!"
    data = call_api(client, "/Hello", {}, expect_succ=False)
    assert data["error"] == {"message": "Invalid path", "info": "INVALID_PATH"}


def test_root_url_cannot_be_resolved():
    client, _ = new_test_client()
    data = call_api(client, "/", {}, expect_succ=False)
    assert data["error"] == {"message": CANT_BE_RESOLVED_MESSAGE, "info": "REQ_CANT_BE_RESOLVED"}


def test_invalid_param_reason_shown():
    client, _ = new_test_client()
    data = call_api(client, "/Hello", {"name": 123}, expect_succ=False)
    assert data["error"]["info"] == "INVALID_REQ_PARAM"
    assert data["error"]["message"].startswith("name: ")


def test_invalid_param_reason_hidden():
    client, _ = new_test_client(show_param_invalid_reason=False)
    data = call_api(client, "/user/Login", {"username": "ann"}, expect_succ=False)
    assert data["error"] == {"message": INVALID_REQ_PARAM_MESSAGE, "info": "INVALID_REQ_PARAM"}


def test_malformed_body_is_400():
    client, _ = new_test_client()
    resp = client.post("/Hello", content=b"{nope", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {
        "isSucc": False,
        "error": {"message": "Invalid Request Body", "info": "INVALID_REQ_BODY"},
    }


def test_hidden_path_mode():
    client, _ = new_test_client(hide_api_path=True)
    data = call_api(client, "/", {RPC_PATH_FIELD: "/Hello", "name": "world"}, expect_succ=True)
    assert data["res"]["reply"] == "Hello, world!"

    data = call_api(client, "/Hello", {"name": "world"}, expect_succ=False)
    assert data["error"] == {"message": HIDDEN_PATH_EXPECTED_MESSAGE, "info": "REQ_CANT_BE_RESOLVED"}


def test_hidden_field_rejected_in_path_mode():
    client, _ = new_test_client()
    data = call_api(client, "/Hello", {RPC_PATH_FIELD: "/Hello"}, expect_succ=False)
    assert data["error"]["info"] == "REQ_CANT_BE_RESOLVED"


def test_second_write_is_ignored():
    server = hello_server()
    from typedrpc.tests.fixtures.protocol.PtlHello import PtlHello

    @server.api(PtlHello)
    def twice(req, res):
        res.succ({"reply": "first"})
        res.succ({"reply": "second"})
        res.error("third")

    client, _ = new_test_client(server)
    data = call_api(client, "/Hello", {}, expect_succ=True)
    assert data["res"] == {"reply": "first"}


def test_completion_hook_runs_and_its_failure_is_contained(caplog):
    server = hello_server()
    done = []

    def on_complete(req, res):
        done.append((req.rpc_path, res.is_succ))
        raise RuntimeError("hook broke")

    server.on_api_complete = on_complete
    client, _ = new_test_client(server)
    data = call_api(client, "/Hello", {"name": "x"}, expect_succ=True)
    assert data["res"]["reply"] == "Hello, x!"
    assert done == [("/Hello", True)]
    assert "on_api_complete failed" in caplog.text


def test_completion_hook_not_called_before_dispatch():
    server = hello_server()
    done = []
    server.on_api_complete = lambda req, res: done.append(req.rpc_path)
    client, _ = new_test_client(server)
    call_api(client, "/Nope", {}, expect_succ=False)
    assert done == []


def test_custom_not_found_hook():
    class MyServer(RpcServer):
        def on_ptl_not_found(self, req, res):
            res.error(f"no such api: {req.rpc_path}", "MISSING")

    client, _ = new_test_client(MyServer(make_server().config))
    data = call_api(client, "/Nope", {}, expect_succ=False)
    assert data["error"] == {"message": "no such api: /Nope", "info": "MISSING"}


def test_middleware_can_answer_and_raise():
    server = hello_server()

    def auth(req, res):
        if req.headers.get("authorization") != "Bearer ok":
            raise TypedRpcError("Need login", "NEED_LOGIN")

    server.use("/user", auth)
    client, _ = new_test_client(server)

    resp = client.post("/user/Login", json={"username": "a", "password": "secret"})
    assert resp.json()["error"] == {"message": "Need login", "info": "NEED_LOGIN"}

    resp = client.post(
        "/user/Login",
        json={"username": "a", "password": "secret"},
        headers={"authorization": "Bearer ok"},
    )
    assert resp.json()["isSucc"] is True


def test_middleware_crash_is_unhandled_error():
    server = hello_server()

    def broken(req, res):
        raise KeyError("oops")

    server.use(broken)
    client, _ = new_test_client(server)
    data = call_api(client, "/Hello", {}, expect_succ=False)
    assert data["error"]["info"] == "UNHANDLED_API_ERROR"


def test_error_http_status_mapping():
    client, _ = new_test_client(error_http_status=True)
    call_api(client, "/Nope", {}, expect_succ=False, status_code=404)
    call_api(client, "/Hello", {"name": 1}, expect_succ=False, status_code=400)
    call_api(client, "/Hello", {"name": "Error"}, expect_succ=False, status_code=500)
    # handler-defined codes keep travelling with 200
    call_api(client, "/Hello", {"name": "TsrpcError"}, expect_succ=False, status_code=200)


def test_binary_transport_uses_cbor():
    client, _ = new_test_client(binary_transport=True)
    resp = client.post(
        "/Hello",
        content=cbor2.dumps({"name": "cbor"}),
        headers={"content-type": "application/cbor"},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/cbor")
    assert cbor2.loads(resp.content) == {"isSucc": True, "res": {"reply": "Hello, cbor!"}}


def test_request_id_header_round_trips():
    client, _ = new_test_client(access_log=True)
    resp = client.post("/Hello", json={}, headers={"x-request-id": "abc123"})
    assert resp.headers["x-request-id"] == "abc123"


def test_handle_without_http():
    import asyncio

    server = hello_server()
    result = asyncio.run(server.handle("POST", "/Hello", {}, b'{"name":"direct"}'))
    assert result.status_code == 200
    assert result.body == b'{"isSucc":true,"res":{"reply":"Hello, direct!"}}'


def test_metrics_endpoint():
    labels = {"path": "/Hello", "status": "succ", "code": ""}
    before = REG.get_sample_value("typedrpc_api_calls_total", labels) or 0.0

    client, _ = new_test_client(metrics_enabled=True)
    call_api(client, "/Hello", {"name": "m"}, expect_succ=True)

    assert REG.get_sample_value("typedrpc_api_calls_total", labels) == before + 1
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "typedrpc_api_calls_total" in resp.text


def test_invalid_params_never_reach_the_handler():
    server = hello_server()
    from typedrpc.tests.fixtures.protocol.PtlHello import PtlHello

    calls = []

    @server.api(PtlHello)
    def record(req, res):
        calls.append(req.args)
        res.succ({"reply": "ran"})

    client, _ = new_test_client(server)
    data = call_api(client, "/Hello", {"name": 123}, expect_succ=False)
    assert data["error"]["info"] == "INVALID_REQ_PARAM"
    assert calls == []


def test_async_not_found_hook_is_awaited():
    class MyServer(RpcServer):
        async def on_ptl_not_found(self, req, res):
            res.error(f"missing {req.rpc_path}", "MISSING")

    client, _ = new_test_client(MyServer(make_server().config))
    data = call_api(client, "/Nope", {}, expect_succ=False)
    assert data["error"] == {"message": "missing /Nope", "info": "MISSING"}


def test_async_unhandled_error_hook_is_awaited():
    server = hello_server()
    seen = []

    async def on_unhandled(err, req, res):
        seen.append(type(err).__name__)
        res.error("Something broke", "OOPS")

    server.on_unhandled_api_error = on_unhandled
    client, _ = new_test_client(server)
    data = call_api(client, "/Hello", {"name": "Error"}, expect_succ=False)
    assert data["error"] == {"message": "Something broke", "info": "OOPS"}
    assert seen == ["RuntimeError"]


class Opaque:
    pass


def test_unencodable_payload_becomes_unhandled_error(caplog):
    server = hello_server(binary_transport=True)
    from typedrpc.tests.fixtures.protocol.PtlHello import PtlHello

    server.implement(PtlHello, lambda req, res: res.succ({"x": Opaque()}))
    client, _ = new_test_client(server)
    resp = client.post(
        "/Hello", content=cbor2.dumps({}), headers={"content-type": "application/cbor"}
    )
    assert resp.status_code == 200
    assert cbor2.loads(resp.content) == {
        "isSucc": False,
        "error": {"message": "Internal Server Error", "info": "UNHANDLED_API_ERROR"},
    }
    assert "response encode failed" in caplog.text


def test_deeply_nested_body_is_invalid_body():
    client, _ = new_test_client()
    body = b"[" * 100000 + b"]" * 100000
    resp = client.post("/Hello", content=body, headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"]["info"] == "INVALID_REQ_BODY"


@pytest.mark.parametrize("body_sample", [0, 64])
def test_access_log_leaves_body_for_the_handler(caplog, body_sample):
    client, _ = new_test_client(access_log=True, access_log_body_sample=body_sample)
    with caplog.at_level(logging.INFO, logger="typedrpc.access"):
        data = call_api(client, "/Hello", {"name": "logged"}, expect_succ=True)
    assert data["res"]["reply"] == "Hello, logged!"
    assert '"rpc_path":"/Hello"' in caplog.text
