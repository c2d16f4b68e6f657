"""Tests for the MCP handshake, session reuse and request headers."""

import asyncio
import json

import httpx
import pytest
from conftest import (
    FOOD,
    FakeMcpServer,
)

from mcpilot.core.errors import (
    AuthenticationRequired,
    HandshakeFailed,
    ProtocolError,
    RemoteError,
)
from mcpilot.mcp.connection import (
    SESSION_HEADER,
    ConnectionManager,
    decode_body,
)


async def test_stateful_handshake_sends_initialized_and_session_header(
    server: FakeMcpServer,
) -> None:
    """A session id from ``initialize`` is acknowledged and sent on later requests."""

    server.add(FOOD.url, session_id="sess-42")
    manager = ConnectionManager(client=server.client())

    conn = await manager.ensure_connection(FOOD, "tok")
    assert conn.session_id == "sess-42"
    assert not conn.stateless

    (notification,) = server.requests_for("notifications/initialized")
    assert notification.headers[SESSION_HEADER] == "sess-42"
    assert notification.headers["authorization"] == "Bearer tok"

    await manager.request(conn, "tools/list", request_id=2)
    (listing,) = server.requests_for("tools/list")
    assert listing.headers[SESSION_HEADER] == "sess-42"
    assert "text/event-stream" in listing.headers["accept"]


async def test_stateless_handshake_omits_session_header(server: FakeMcpServer) -> None:
    """Without a session id no notification is sent and no session header is used."""

    server.add(FOOD.url)
    manager = ConnectionManager(client=server.client())

    conn = await manager.ensure_connection(FOOD, "tok")
    await manager.request(conn, "tools/list", request_id=2)

    assert conn.stateless
    assert server.count("notifications/initialized") == 0
    (listing,) = server.requests_for("tools/list")
    assert SESSION_HEADER not in listing.headers
    assert listing.headers["authorization"] == "Bearer tok"


async def test_initialize_payload(server: FakeMcpServer) -> None:
    server.add(FOOD.url)
    manager = ConnectionManager(client=server.client(), client_name="tester", client_version="9")

    await manager.ensure_connection(FOOD, "tok")

    (init,) = server.requests_for("initialize")
    params = json.loads(init.content)["params"]
    assert params["protocolVersion"] == manager.protocol_version
    assert params["clientInfo"] == {"name": "tester", "version": "9"}


async def test_concurrent_calls_share_one_handshake(server: FakeMcpServer) -> None:
    """Two concurrent callers for the same endpoint converge on a single ``initialize``."""

    server.add(FOOD.url, session_id="s1")
    manager = ConnectionManager(client=server.client())

    first, second = await asyncio.gather(
        manager.ensure_connection(FOOD, "tok"), manager.ensure_connection(FOOD, "tok")
    )

    assert first is second
    assert server.count("initialize") == 1


async def test_cached_connection_is_reused_until_invalidated(server: FakeMcpServer) -> None:
    server.add(FOOD.url)
    manager = ConnectionManager(client=server.client())

    await manager.ensure_connection(FOOD, "tok")
    await manager.ensure_connection(FOOD, "tok")
    assert server.count("initialize") == 1

    manager.invalidate()
    assert manager.cached(FOOD) is None
    await manager.ensure_connection(FOOD, "tok")
    assert server.count("initialize") == 2


async def test_new_credential_replaces_cached_connection(server: FakeMcpServer) -> None:
    server.add(FOOD.url)
    manager = ConnectionManager(client=server.client())

    await manager.ensure_connection(FOOD, "old")
    conn = await manager.ensure_connection(FOOD, "new")

    assert conn.credential == "new"
    assert server.count("initialize") == 2


async def test_missing_credential_rejected_raises_authentication_required(
    server: FakeMcpServer,
) -> None:
    server.add(FOOD.url, require_auth=True)
    manager = ConnectionManager(client=server.client())

    with pytest.raises(AuthenticationRequired):
        await manager.ensure_connection(FOOD, None)

    (init,) = server.requests_for("initialize")
    assert "authorization" not in init.headers


async def test_http_failure_raises_handshake_failed(server: FakeMcpServer) -> None:
    server.add(FOOD.url, fail_status=500)
    manager = ConnectionManager(client=server.client())

    with pytest.raises(HandshakeFailed, match="HTTP 500"):
        await manager.ensure_connection(FOOD, "tok")
    assert manager.cached(FOOD) is None


async def test_error_object_raises_handshake_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32600, "message": "nope"}}
        )

    manager = ConnectionManager(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(HandshakeFailed, match="nope"):
        await manager.ensure_connection(FOOD, "tok")


async def test_invalid_payload_raises_handshake_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>hello</html>")

    manager = ConnectionManager(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(HandshakeFailed, match="invalid payload"):
        await manager.ensure_connection(FOOD, "tok")


async def test_network_error_raises_handshake_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    manager = ConnectionManager(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(HandshakeFailed, match="connection refused"):
        await manager.ensure_connection(FOOD, "tok")


async def test_request_errors(server: FakeMcpServer) -> None:
    """Error objects raise the requested class; non-JSON bodies raise *ProtocolError*."""

    server.add(FOOD.url)
    manager = ConnectionManager(client=server.client())
    conn = await manager.ensure_connection(FOOD, "tok")

    with pytest.raises(RemoteError, match="bad method"):
        await manager.request(conn, "resources/list")

    server.servers[FOOD.url]["on_call"] = lambda name, args: httpx.Response(200, text="oops")
    with pytest.raises(ProtocolError, match="invalid JSON"):
        await manager.request(conn, "tools/call", params={"name": "x", "arguments": {}})


async def test_expired_session_is_dropped(server: FakeMcpServer) -> None:
    """A 404 on a session-bound request forces a new handshake next time."""

    server.add(FOOD.url, session_id="s1")
    manager = ConnectionManager(client=server.client())
    conn = await manager.ensure_connection(FOOD, "tok")

    server.servers[FOOD.url]["on_call"] = lambda name, args: httpx.Response(
        404, json={"jsonrpc": "2.0", "id": 3, "error": {"message": "Session not found"}}
    )
    with pytest.raises(RemoteError, match="Session not found"):
        await manager.request(conn, "tools/call", params={"name": "x", "arguments": {}})

    assert manager.cached(FOOD) is None


def test_decode_event_stream_body() -> None:
    """The last JSON-RPC message of an SSE body is used."""

    body = (
        "event: message\n"
        'data: {"jsonrpc": "2.0", "method": "notifications/progress"}\n\n'
        "event: message\n"
        'data: {"jsonrpc": "2.0", "id": 2, "result": {"tools": []}}\n\n'
    )
    response = httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    assert decode_body(response) == {"jsonrpc": "2.0", "id": 2, "result": {"tools": []}}


def test_decode_plain_json_and_garbage() -> None:
    assert decode_body(httpx.Response(200, json={"a": 1})) == {"a": 1}
    assert decode_body(httpx.Response(200, text="not json")) is None
    assert decode_body(httpx.Response(200, text="")) is None
