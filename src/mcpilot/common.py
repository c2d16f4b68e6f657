"""Common utility functions for the project."""

import json
from enum import Enum
from typing import (
    Any,
    Iterable,
    Iterator,
    Tuple,
)


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def preview(text: str, limit: int = 150) -> str:
    """Shorten *text* for log lines and error messages."""
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + "..."


def parse_json(text: str | None) -> Any:
    """Return the decoded JSON value of *text*, or ``None`` if it is not JSON."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def walk(value: Any, max_depth: int = 5) -> Iterator[Tuple[str, Any, int]]:
    """
    Yield ``(key, child, depth)`` for every mapping entry reachable from *value*.

    Traversal uses an explicit stack and stops descending below *max_depth*, so
    deeply nested or self-referencing payloads always terminate.  List items
    are traversed but do not produce a key of their own.
    """
    stack: list[Tuple[Any, int]] = [(value, 0)]
    seen: set[int] = set()
    while stack:
        node, depth = stack.pop()
        if depth > max_depth or id(node) in seen:
            continue
        if isinstance(node, dict):
            seen.add(id(node))
            for key, child in node.items():
                yield str(key), child, depth
            stack.extend((child, depth + 1) for child in reversed(list(node.values())))
        elif isinstance(node, list):
            seen.add(id(node))
            stack.extend((child, depth + 1) for child in reversed(node))


def find_key(value: Any, keys: Iterable[str], max_depth: int = 5) -> Any:
    """Return the first non-empty value stored under any of *keys* inside *value*."""
    wanted = set(keys)
    for key, child, _ in walk(value, max_depth):
        if key in wanted and child not in (None, "", [], {}):
            return child
    return None
