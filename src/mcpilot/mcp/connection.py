"""
Session lifecycle for MCP endpoints spoken over Streamable HTTP.

A :class:`ConnectionManager` performs the ``initialize`` handshake once per endpoint, remembers the
``Mcp-Session-Id`` the server hands out (if any) and posts every later JSON-RPC request with the
right headers.  Servers that answer ``initialize`` without a session id are treated as stateless:
their requests carry the bearer credential but no session header.

Concurrent callers asking for the same endpoint share a single handshake.
"""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    Dict,
    Type,
)

import httpx

from mcpilot.common import (
    parse_json,
    preview,
)
from mcpilot.config import settings
from mcpilot.core.errors import (
    AuthenticationRequired,
    HandshakeFailed,
    ProtocolError,
    RemoteError,
)
from mcpilot.core.schema import (
    Connection,
    Endpoint,
)

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
ACCEPT = "application/json, text/event-stream"

INITIALIZE_ID = 1
TOOLS_LIST_ID = 2
TOOLS_CALL_ID = 3


# ---------------------------------------------------------------------------
# Body decoding
# ---------------------------------------------------------------------------
def _decode_event_stream(text: str) -> Any:
    """Return the last JSON-RPC message carried by a ``text/event-stream`` body."""
    found = None
    for event in text.replace("\r\n", "\n").split("\n\n"):
        data = "\n".join(
            line[5:].lstrip() for line in event.split("\n") if line.startswith("data:")
        )
        message = parse_json(data)
        if isinstance(message, dict) and ("result" in message or "error" in message):
            found = message
    return found


def decode_body(response: httpx.Response) -> Any:
    """Decode a JSON or SSE response body; ``None`` if it is neither."""
    content_type = response.headers.get("content-type", "")
    if content_type.startswith("text/event-stream"):
        return _decode_event_stream(response.text)
    return parse_json(response.text)


def _error_message(error: Any) -> str:
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return str(error)


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------
class ConnectionManager:
    """Creates, caches and uses one :class:`Connection` per endpoint address."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        protocol_version: str | None = None,
        client_name: str | None = None,
        client_version: str | None = None,
    ):
        self._client = client
        self.protocol_version = protocol_version or settings.MCP_PROTOCOL_VERSION
        self.client_info = {
            "name": client_name or settings.MCP_CLIENT_NAME,
            "version": client_version or settings.MCP_CLIENT_VERSION,
        }
        self._connections: Dict[str, Connection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.MCP_HTTP_TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def cached(self, endpoint: Endpoint) -> Connection | None:
        return self._connections.get(endpoint.url)

    def invalidate(self, endpoint: Endpoint | None = None) -> None:
        """Forget the cached connection for *endpoint*, or for every endpoint."""
        if endpoint is None:
            self._connections.clear()
        else:
            self._connections.pop(endpoint.url, None)

    # -- headers ------------------------------------------------------------
    @staticmethod
    def _headers(credential: str | None, session_id: str | None = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": ACCEPT}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        if session_id:
            headers[SESSION_HEADER] = session_id
        return headers

    def headers(self, conn: Connection) -> Dict[str, str]:
        return self._headers(conn.credential, conn.session_id)

    # -- handshake ----------------------------------------------------------
    async def ensure_connection(self, endpoint: Endpoint, credential: str | None) -> Connection:
        """
        Return the cached connection for *endpoint*, performing the handshake if needed.

        A cached connection made with a different credential is replaced.

        Raises
        ------
        AuthenticationRequired
            If the server rejects the handshake and no credential was supplied.
        HandshakeFailed
            For any other failed or malformed ``initialize`` exchange.
        """
        conn = self._connections.get(endpoint.url)
        if conn is not None and conn.credential == credential:
            return conn

        lock = self._locks.setdefault(endpoint.url, asyncio.Lock())
        async with lock:
            # Another caller may have finished the handshake while we waited.
            conn = self._connections.get(endpoint.url)
            if conn is not None and conn.credential == credential:
                return conn
            conn = await self._handshake(endpoint, credential)
            self._connections[endpoint.url] = conn
            return conn

    async def _handshake(self, endpoint: Endpoint, credential: str | None) -> Connection:
        payload = {
            "jsonrpc": "2.0",
            "method": "initialize",
            "params": {
                "protocolVersion": self.protocol_version,
                "capabilities": {},
                "clientInfo": self.client_info,
            },
            "id": INITIALIZE_ID,
        }
        try:
            resp = await self.client.post(
                endpoint.url, json=payload, headers=self._headers(credential)
            )
        except httpx.HTTPError as exc:
            logger.error("initialize request to %s failed: %s", endpoint.url, exc)
            raise HandshakeFailed(f"MCP initialize request failed: {exc}") from exc

        body = decode_body(resp)
        if isinstance(body, dict) and body.get("error"):
            message = _error_message(body["error"])
            logger.error("initialize failed %s %s", endpoint.url, message)
            if resp.status_code in (401, 403) and not credential:
                raise AuthenticationRequired(f"{endpoint.key} requires a credential: {message}")
            raise HandshakeFailed(f"MCP initialize failed: {message}")

        if not resp.is_success:
            logger.error(
                "initialize HTTP %d %s %s", resp.status_code, endpoint.url, preview(resp.text)
            )
            if resp.status_code in (401, 403) and not credential:
                raise AuthenticationRequired(
                    f"{endpoint.key} requires a credential (HTTP {resp.status_code})"
                )
            raise HandshakeFailed(
                f"MCP initialize HTTP {resp.status_code}. {preview(resp.text, 200)}"
            )

        if not isinstance(body, dict) or "result" not in body:
            logger.error("initialize returned an invalid payload from %s", endpoint.url)
            raise HandshakeFailed(
                f"MCP initialize returned an invalid payload: {preview(resp.text)}"
            )

        session_id = resp.headers.get("mcp-session-id")
        if session_id:
            await self._notify_initialized(endpoint, credential, session_id)

        logger.info("connected %s %s", endpoint.url, "with session" if session_id else "stateless")
        return Connection(endpoint=endpoint, session_id=session_id or None, credential=credential)

    async def _notify_initialized(
        self, endpoint: Endpoint, credential: str | None, session_id: str
    ) -> None:
        """Send the ``initialized`` notification; the reply is never inspected."""
        try:
            await self.client.post(
                endpoint.url,
                json={"jsonrpc": "2.0", "method": "notifications/initialized"},
                headers=self._headers(credential, session_id),
            )
        except httpx.HTTPError as exc:
            logger.warning("initialized notification to %s failed: %s", endpoint.url, exc)

    # -- requests -----------------------------------------------------------
    async def request(
        self,
        conn: Connection,
        method: str,
        params: Dict[str, Any] | None = None,
        request_id: int = TOOLS_CALL_ID,
        error_cls: Type[RemoteError] = RemoteError,
    ) -> Any:
        """
        Post one JSON-RPC request over *conn* and return its ``result`` member.

        Raises
        ------
        ProtocolError
            If the request cannot be sent or the body is not a JSON-RPC message.
        RemoteError
            (or *error_cls*) if the server answered with an ``error`` object.
        """
        endpoint = conn.endpoint
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
        if params is not None:
            payload["params"] = params

        try:
            resp = await self.client.post(endpoint.url, json=payload, headers=self.headers(conn))
        except httpx.HTTPError as exc:
            raise ProtocolError(f"{method} request to {endpoint.key} failed: {exc}") from exc

        if resp.status_code == 404 and conn.session_id:
            # The server dropped our session; the next call must handshake again.
            logger.warning("session for %s expired, dropping cached connection", endpoint.url)
            self.invalidate(endpoint)

        data = decode_body(resp)
        if not isinstance(data, dict):
            raise ProtocolError(f"{method} invalid JSON ({endpoint.key}): {preview(resp.text)}")
        if data.get("error"):
            raise error_cls(_error_message(data["error"]))
        if not resp.is_success:
            raise ProtocolError(
                f"{method} HTTP {resp.status_code} ({endpoint.key}): {preview(resp.text)}"
            )
        return data.get("result")
