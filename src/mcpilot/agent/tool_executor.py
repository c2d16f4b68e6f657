"""Dispatches namespaced tool calls to the endpoint that owns them."""

import json
import logging
from typing import (
    Any,
    Dict,
    Sequence,
)

from mcpilot.core.errors import ToolInvocationError
from mcpilot.core.schema import Endpoint
from mcpilot.mcp.connection import (
    TOOLS_CALL_ID,
    ConnectionManager,
)
from mcpilot.mcp.endpoints import (
    DEFAULT_ENDPOINTS,
    resolve,
)

logger = logging.getLogger(__name__)


def result_text(result: Any) -> str:
    """
    Flatten a ``tools/call`` result into text.

    All ``text`` segments of ``result.content`` are joined with newlines; a result without any
    text segment is serialised as JSON instead.
    """
    content = result.get("content") if isinstance(result, dict) else None
    parts = [
        str(seg.get("text", ""))
        for seg in content or []
        if isinstance(seg, dict) and seg.get("type") == "text"
    ]
    if parts:
        return "\n".join(parts)
    return json.dumps(result, ensure_ascii=False)


class ToolInvoker:
    """Resolves a namespaced tool name and runs it over the endpoint's connection."""

    def __init__(
        self, connections: ConnectionManager, endpoints: Sequence[Endpoint] = DEFAULT_ENDPOINTS
    ):
        self.connections = connections
        self.endpoints = tuple(endpoints)

    async def call_tool(
        self, name: str, arguments: Dict[str, Any] | None, credential: str | None
    ) -> str:
        """
        Invoke *name* with *arguments* and return the textual result.

        Parameters
        ----------
        name:
            The namespaced tool name, e.g. ``swiggy_food__search_restaurants``.
        arguments:
            JSON arguments passed verbatim to the remote tool.  If *None*, an empty object is sent.
        credential:
            Bearer token used if the endpoint connection has to be established.

        Raises
        ------
        UnknownTool
            If no endpoint prefix matches *name*.
        ToolInvocationError
            If the server reports an error for the call.
        ProtocolError
            If the response is not valid JSON-RPC.
        """
        endpoint, original = resolve(name, self.endpoints)
        conn = await self.connections.ensure_connection(endpoint, credential)

        logger.debug("Calling tool '%s' on %s with args=%s", original, endpoint.key, arguments)
        try:
            result = await self.connections.request(
                conn,
                "tools/call",
                params={"name": original, "arguments": arguments or {}},
                request_id=TOOLS_CALL_ID,
                error_cls=ToolInvocationError,
            )
        except ToolInvocationError as exc:
            logger.error("callTool %s error=%s", original, exc)
            raise

        text = result_text(result)
        logger.info("callTool %s server=%s resultLength=%d", original, endpoint.key, len(text))
        return text
