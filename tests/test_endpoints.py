"""Tests for the tool naming convention and endpoint validation."""

import pytest

from mcpilot.core.errors import UnknownTool
from mcpilot.core.schema import Endpoint
from mcpilot.mcp.endpoints import (
    DEFAULT_ENDPOINTS,
    namespace,
    resolve,
    validate_endpoints,
)


@pytest.mark.parametrize("endpoint", DEFAULT_ENDPOINTS, ids=lambda ep: ep.key)
@pytest.mark.parametrize(
    "original", ["search_restaurants", "place_food_order", "x", "swiggy_im__nested", "get__menu"]
)
def test_resolve_inverts_namespace(endpoint: Endpoint, original: str) -> None:
    """Every name the catalog produces maps back to its endpoint and original name."""

    assert resolve(namespace(endpoint, original), DEFAULT_ENDPOINTS) == (endpoint, original)


def test_resolve_unknown_prefix() -> None:
    """A name without a configured prefix raises *UnknownTool*."""

    with pytest.raises(UnknownTool, match="bogus_tool"):
        resolve("bogus_tool", DEFAULT_ENDPOINTS)


def test_resolve_prefers_longest_prefix() -> None:
    """When prefixes overlap the most specific endpoint wins."""

    short = Endpoint(key="a", url="http://a", prefix="a_")
    long = Endpoint(key="ab", url="http://ab", prefix="a_b_")

    assert resolve("a_b_tool", [short, long]) == (long, "tool")
    assert resolve("a_tool", [short, long]) == (short, "tool")


def test_validate_rejects_ambiguous_prefixes() -> None:
    """A prefix that is a prefix of another endpoint's prefix is refused."""

    with pytest.raises(ValueError, match="ambiguous"):
        validate_endpoints(
            [
                Endpoint(key="a", url="http://a", prefix="svc_"),
                Endpoint(key="b", url="http://b", prefix="svc_food_"),
            ]
        )


def test_validate_rejects_duplicate_keys_and_empty_prefix() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        validate_endpoints(
            [
                Endpoint(key="a", url="http://a", prefix="a_"),
                Endpoint(key="a", url="http://b", prefix="b_"),
            ]
        )
    with pytest.raises(ValueError, match="empty prefix"):
        validate_endpoints([Endpoint(key="a", url="http://a", prefix="")])


def test_default_endpoints_are_valid() -> None:
    assert validate_endpoints(DEFAULT_ENDPOINTS) == DEFAULT_ENDPOINTS
