"""
Tool catalog for mcpilot.

The catalog asks every configured endpoint for its ``tools/list`` concurrently, namespaces each
tool with its endpoint prefix and merges the results into one list the model can choose from.
One endpoint failing does not fail the catalog; only a total failure is reported to the caller.
"""

import asyncio
import logging
from typing import (
    Dict,
    List,
    Sequence,
    Tuple,
)

from mcpilot.core.errors import AllEndpointsUnreachable
from mcpilot.core.schema import (
    Endpoint,
    Tool,
)
from mcpilot.mcp.connection import (
    TOOLS_LIST_ID,
    ConnectionManager,
)
from mcpilot.mcp.endpoints import (
    DEFAULT_ENDPOINTS,
    namespace,
    validate_endpoints,
)

logger = logging.getLogger(__name__)


class ToolCatalog:
    """Merged, namespaced view over the tools of every endpoint."""

    def __init__(
        self, connections: ConnectionManager, endpoints: Sequence[Endpoint] = DEFAULT_ENDPOINTS
    ):
        self.connections = connections
        self.endpoints = validate_endpoints(endpoints)
        self._cached: Tuple[str | None, Dict[str, List[Tool]]] | None = None

    def clear(self) -> None:
        """Drop the cached catalog so the next call fetches it again."""
        self._cached = None

    async def list_tools_for_endpoint(
        self, endpoint: Endpoint, credential: str | None
    ) -> List[Tool]:
        """Fetch and namespace the tools of a single endpoint."""
        conn = await self.connections.ensure_connection(endpoint, credential)
        result = await self.connections.request(conn, "tools/list", request_id=TOOLS_LIST_ID)

        if isinstance(result, dict) and isinstance(result.get("tools"), list):
            raw_tools = result["tools"]
        elif isinstance(result, list):
            raw_tools = result
        else:
            raw_tools = []

        tools: List[Tool] = []
        for raw in raw_tools:
            if not isinstance(raw, dict):
                continue
            original = str(raw.get("name") or "unknown")
            tools.append(
                Tool(
                    name=namespace(endpoint, original),
                    description=raw.get("description") or "",
                    input_schema=(
                        raw.get("inputSchema") or raw.get("input_schema") or {"type": "object"}
                    ),
                    endpoint_key=endpoint.key,
                    original_name=original,
                )
            )
        logger.info("listTools %s count=%d", endpoint.key, len(tools))
        return tools

    async def list_all_tools(self, credential: str | None) -> List[Tool]:
        """
        Return the merged catalog, fetching whatever is not cached for *credential*.

        Tool lists are cached per endpoint, so an endpoint that failed is asked again on the
        next call while the others are served from the cache.  A different credential drops
        the whole cache.

        Raises
        ------
        AllEndpointsUnreachable
            If every endpoint failed; the message lists each endpoint's reason.
        """
        if self._cached is None or self._cached[0] != credential:
            self._cached = (credential, {})
        per_endpoint = self._cached[1]

        missing = [ep for ep in self.endpoints if ep.key not in per_endpoint]
        results = await asyncio.gather(
            *(self.list_tools_for_endpoint(ep, credential) for ep in missing),
            return_exceptions=True,
        )

        failures: Dict[str, str] = {}
        for endpoint, result in zip(missing, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("tools/list failed for %s: %s", endpoint.key, result)
                failures[endpoint.key] = str(result) or type(result).__name__
                continue
            per_endpoint[endpoint.key] = result

        if failures and not per_endpoint:
            error = AllEndpointsUnreachable(failures)
            logger.error("listAllTools: no tools loaded. %s", error)
            raise error

        merged: Dict[str, Tool] = {}
        for endpoint in self.endpoints:
            for tool in per_endpoint.get(endpoint.key, ()):
                if tool.name in merged:
                    logger.warning("Duplicate tool '%s' from %s ignored", tool.name, endpoint.key)
                    continue
                merged[tool.name] = tool

        logger.info("listAllTools total %d", len(merged))
        return list(merged.values())
