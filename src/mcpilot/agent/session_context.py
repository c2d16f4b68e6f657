"""
Best-effort tracking of identifiers across a chat conversation.

After every tool call the agent loop hands the tool name, its arguments and its raw result to
:func:`update_session_context`.  A small table maps tool-name patterns to extractors that pull
address, restaurant and cart identifiers out of the known result shapes.  Anything unexpected is
ignored: the tracker only saves the model a few discovery calls.
"""

import logging
import re
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Pattern,
    Tuple,
)

from mcpilot.common import (
    find_key,
    parse_json,
)
from mcpilot.core.schema import (
    NamedRef,
    SessionContext,
)

logger = logging.getLogger(__name__)

MAX_RECENT = 5
HINT_MAX_CHARS = 600

_ID_KEYS = ("id", "_id", "uuid")
_ADDRESS_ID_KEYS = ("addressId", "address_id") + _ID_KEYS
_RESTAURANT_ID_KEYS = ("restaurantId", "restaurant_id", "restId") + _ID_KEYS
_NAME_KEYS = ("name", "label", "annotation", "tag", "displayName", "title")
_ADDRESS_TEXT_KEYS = ("address", "addressLine", "formattedAddress", "area", "locality")

Extractor = Callable[[SessionContext, Mapping[str, Any], Any], None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _as_id(value: Any) -> str | None:
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
        return str(value)
    return None


def _first(item: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if item.get(key) not in (None, ""):
            return item[key]
    return None


def _list_under(payload: Any, keys: Tuple[str, ...]) -> List[Mapping[str, Any]]:
    """Find a list of objects stored under *keys* at the top level or inside ``data``."""
    candidates = [payload]
    if isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
        candidates.insert(0, payload["data"])
    for node in candidates:
        if isinstance(node, list):
            return [item for item in node if isinstance(item, dict)]
        if isinstance(node, dict):
            for key in keys:
                if isinstance(node.get(key), list):
                    return [item for item in node[key] if isinstance(item, dict)]
    return []


def _refs(
    items: List[Mapping[str, Any]], id_keys: Tuple[str, ...], name_keys: Tuple[str, ...]
) -> List[NamedRef]:
    refs = []
    for item in items:
        ident = _as_id(_first(item, id_keys))
        if ident is None:
            continue
        name = _first(item, name_keys)
        refs.append(NamedRef(id=ident, name=str(name) if name is not None else ""))
        if len(refs) >= MAX_RECENT:
            break
    return refs


# ---------------------------------------------------------------------------
# Extractors, one per known result shape
# ---------------------------------------------------------------------------
def _addresses(ctx: SessionContext, args: Mapping[str, Any], payload: Any) -> None:
    refs = _refs(
        _list_under(payload, ("addresses", "addressList", "items")),
        _ADDRESS_ID_KEYS,
        _NAME_KEYS + _ADDRESS_TEXT_KEYS,
    )
    if refs:
        ctx.addresses = refs
        if len(refs) == 1:
            ctx.address_id = refs[0].id


def _restaurants(ctx: SessionContext, args: Mapping[str, Any], payload: Any) -> None:
    refs = _refs(
        _list_under(payload, ("restaurants", "results", "items")),
        _RESTAURANT_ID_KEYS,
        _NAME_KEYS,
    )
    if refs:
        ctx.restaurants = refs


def _menu(ctx: SessionContext, args: Mapping[str, Any], payload: Any) -> None:
    ident = _as_id(args.get("restaurantId")) or _as_id(
        find_key(payload, ("restaurantId", "restaurant_id"), max_depth=2)
    )
    if ident:
        ctx.restaurant_id = ident


def _cart(ctx: SessionContext, args: Mapping[str, Any], payload: Any) -> None:
    cart_id = _as_id(find_key(payload, ("cartId", "cart_id"), max_depth=3))
    if cart_id:
        ctx.cart_id = cart_id
    restaurant_id = _as_id(args.get("restaurantId")) or _as_id(
        find_key(payload, ("restaurantId", "restaurant_id"), max_depth=3)
    )
    if restaurant_id:
        ctx.restaurant_id = restaurant_id


EXTRACTORS: List[Tuple[Pattern[str], Extractor]] = [
    (re.compile(r"address", re.I), _addresses),
    (re.compile(r"search.*restaurant|restaurant.*search|search_?dineout", re.I), _restaurants),
    (re.compile(r"menu", re.I), _menu),
    (re.compile(r"cart", re.I), _cart),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def update_session_context(
    ctx: SessionContext, tool_name: str, args: Mapping[str, Any] | None, result: str
) -> None:
    """Update *ctx* in place from one successful tool call."""
    args = args or {}

    # Identifiers the model already chose are the strongest signal we have.
    if _as_id(args.get("addressId")):
        ctx.address_id = str(args["addressId"])
    if _as_id(args.get("cartId")):
        ctx.cart_id = str(args["cartId"])

    payload = parse_json(result)
    if payload is None:
        return
    for pattern, extractor in EXTRACTORS:
        if not pattern.search(tool_name):
            continue
        try:
            extractor(ctx, args, payload)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Context extraction for '%s' skipped: %s", tool_name, exc)


def _describe(refs: List[NamedRef]) -> str:
    return ", ".join(f"{r.name} ({r.id})" if r.name else r.id for r in refs[:MAX_RECENT])


def context_hint(ctx: SessionContext) -> str | None:
    """Summarise known identifiers for the model, or ``None`` if nothing is known yet."""
    if ctx.is_empty():
        return None

    known: Dict[str, str | None] = {
        "addressId": ctx.address_id,
        "restaurantId": ctx.restaurant_id,
        "cartId": ctx.cart_id,
    }
    parts = [", ".join(f"{k}={v}" for k, v in known.items() if v)]
    if ctx.addresses:
        parts.append(f"saved addresses: {_describe(ctx.addresses)}")
    if ctx.restaurants:
        parts.append(f"recent restaurants: {_describe(ctx.restaurants)}")

    body = "; ".join(p for p in parts if p)
    hint = (
        f"[Session context: {body}. Reuse these IDs instead of calling the address or search "
        "tools again unless the user asks for something new.]"
    )
    if len(hint) > HINT_MAX_CHARS:
        hint = hint[: HINT_MAX_CHARS - 4] + "...]"
    return hint
