"""
Locate the Swiggy bearer token.

Order of precedence:
1. ``SWIGGY_AUTH_TOKEN`` from the environment or ``.env``
2. an ``Authorization`` header stored for one of the Swiggy servers in Cursor's ``mcp.json``

Cursor does not write OAuth tokens to ``mcp.json`` by itself; the second source only works if the
user pasted the header there manually.
"""

import json
import logging
from pathlib import Path

from mcpilot.config import (
    Settings,
    settings,
)

logger = logging.getLogger(__name__)

CURSOR_SERVER_KEYS = ("swiggy-food", "swiggy-instamart", "swiggy-dineout")


def token_from_cursor_config(path: str | Path) -> str | None:
    """Return the first Swiggy bearer token found in a Cursor ``mcp.json`` file."""
    path = Path(path).expanduser()
    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None

    servers = config.get("mcpServers") if isinstance(config, dict) else None
    if not isinstance(servers, dict):
        return None
    for key in CURSOR_SERVER_KEYS:
        server = servers.get(key)
        headers = server.get("headers") if isinstance(server, dict) else None
        auth = headers.get("Authorization") if isinstance(headers, dict) else None
        if isinstance(auth, str) and auth:
            token = auth[len("Bearer ") :] if auth.startswith("Bearer ") else auth
            if token:
                logger.debug("Using Swiggy token from %s (%s)", path, key)
                return token
    return None


def resolve_credential(fresh: bool = False) -> str | None:
    """
    Return the bearer token to use, or ``None`` if none is configured.

    With *fresh* the ``.env`` file and environment are read again, so a rotated token is picked
    up without restarting the process.
    """
    current = Settings() if fresh else settings
    if current.SWIGGY_AUTH_TOKEN:
        return current.SWIGGY_AUTH_TOKEN
    return token_from_cursor_config(current.CURSOR_MCP_PATH)
