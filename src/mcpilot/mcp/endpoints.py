"""
Endpoint table and the tool naming convention.

Every remote tool is exposed to the model as ``<endpoint prefix><original name>``.  Prefixes are
validated so that none is a prefix of another, which makes :func:`resolve` the exact inverse of
:func:`namespace`.
"""

from typing import (
    Sequence,
    Tuple,
)

from mcpilot.core.errors import UnknownTool
from mcpilot.core.schema import Endpoint

DEFAULT_ENDPOINTS: Tuple[Endpoint, ...] = (
    Endpoint(key="swiggy_food", url="https://mcp.swiggy.com/food", prefix="swiggy_food__"),
    Endpoint(key="swiggy_im", url="https://mcp.swiggy.com/im", prefix="swiggy_im__"),
    Endpoint(key="swiggy_dineout", url="https://mcp.swiggy.com/dineout", prefix="swiggy_dineout__"),
)


def validate_endpoints(endpoints: Sequence[Endpoint]) -> Tuple[Endpoint, ...]:
    """
    Check that keys are unique and that no prefix shadows another.

    Raises
    ------
    ValueError
        If two endpoints share a key, a prefix is empty, or one prefix starts with another.
    """
    keys = [ep.key for ep in endpoints]
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate endpoint keys: {keys}")

    for ep in endpoints:
        if not ep.prefix:
            raise ValueError(f"Endpoint '{ep.key}' has an empty prefix")
        for other in endpoints:
            if other is not ep and other.prefix.startswith(ep.prefix):
                raise ValueError(
                    f"Prefix '{ep.prefix}' of '{ep.key}' is ambiguous with '{other.prefix}'"
                )
    return tuple(endpoints)


def namespace(endpoint: Endpoint, original_name: str) -> str:
    """Return the catalog-wide name for *original_name* served by *endpoint*."""
    return endpoint.prefix + original_name


def resolve(name: str, endpoints: Sequence[Endpoint]) -> Tuple[Endpoint, str]:
    """
    Map a namespaced tool name back to ``(endpoint, original name)``.

    The longest matching prefix wins.

    Raises
    ------
    UnknownTool
        If no endpoint prefix matches *name*.
    """
    matches = [ep for ep in endpoints if name.startswith(ep.prefix)]
    if not matches:
        raise UnknownTool(f"Unknown tool server for: {name}")
    endpoint = max(matches, key=lambda ep: len(ep.prefix))
    return endpoint, name[len(endpoint.prefix) :]
