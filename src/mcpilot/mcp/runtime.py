"""Process-wide MCP state: the connection cache, the tool catalog and the invoker built on them."""

import logging
from typing import Sequence

import httpx

from mcpilot.agent.tool_executor import ToolInvoker
from mcpilot.core.schema import Endpoint
from mcpilot.mcp.connection import ConnectionManager
from mcpilot.mcp.endpoints import DEFAULT_ENDPOINTS
from mcpilot.tools import ToolCatalog

logger = logging.getLogger(__name__)


class McpRuntime:
    """
    Owns the caches shared by every conversation.

    One instance lives for the whole process (see ``mcpilot.api.app``); tests build their own
    with a mock transport.
    """

    def __init__(
        self,
        endpoints: Sequence[Endpoint] = DEFAULT_ENDPOINTS,
        client: httpx.AsyncClient | None = None,
    ):
        self.connections = ConnectionManager(client=client)
        self.catalog = ToolCatalog(self.connections, endpoints)
        self.invoker = ToolInvoker(self.connections, self.catalog.endpoints)

    def clear_caches(self) -> None:
        """Forget every session and the merged catalog (e.g. after a credential change)."""
        self.connections.invalidate()
        self.catalog.clear()
        logger.info("MCP caches cleared")

    async def aclose(self) -> None:
        await self.connections.aclose()
