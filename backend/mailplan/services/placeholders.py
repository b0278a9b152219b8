"""
Placeholder parsing and JSON path resolution for chained plan steps.

A plan argument may reference an earlier step's parsed response:

    {{steps[0].outputs.id}}
    {{steps[1].outputs.orders[0].customer.email}}
    {{steps[2].outputs[0].id}}          (response is a plain array)

The path after ``outputs`` is always evaluated from the root of the
referenced step's response. Name segments index objects, bracketed integers
index arrays. Anything that cannot be followed resolves to NOT_FOUND, which is
distinct from a legitimately resolved None.
"""

import re
from typing import Any, Optional, Union


class _NotFound:
    """Sentinel for a path that does not exist in the data."""

    _instance: Optional["_NotFound"] = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()

PathToken = Union[str, int]

# One segment: a bare name (no dots or brackets) or a bracketed index
_TOKEN_RE = re.compile(r"\[(\d+)\]|([^.\[\]]+)")
_PATH_RE = re.compile(r"^(?:[^.\[\]]+|\[\d+\])(?:\.[^.\[\]]+|\[\d+\])*$")

# {{steps[N].outputs.PATH}} or {{steps[N].outputs[K]...}}; whole string only
_PLACEHOLDER_RE = re.compile(
    r"^\{\{\s*steps\[(\d+)\]\.outputs((?:\.[^.\[\]\s{}]+|\[\d+\])+)\s*\}\}$"
)

# Anything that starts like a step reference, wherever it sits in the string
_REFERENCE_START_RE = re.compile(r"\{\{\s*steps\s*\[")


def parse_path(path: str) -> list[PathToken]:
    """
    Split ``orders[1].customer.id`` into ``["orders", 1, "customer", "id"]``.

    Raises ValueError for empty or malformed paths (``a..b``, ``a[x]``, ``.a``).
    """
    if not path or not _PATH_RE.match(path):
        raise ValueError(f"Malformed output path: {path!r}")

    tokens: list[PathToken] = []
    for index, name in _TOKEN_RE.findall(path):
        tokens.append(int(index) if index else name)
    return tokens


def resolve_tokens(data: Any, tokens: list[PathToken]) -> Any:
    node = data
    for token in tokens:
        if isinstance(token, int):
            if not isinstance(node, list) or token >= len(node):
                return NOT_FOUND
            node = node[token]
        else:
            if not isinstance(node, dict) or token not in node:
                return NOT_FOUND
            node = node[token]
    return node


def resolve_path(data: Any, path: str) -> Any:
    """
    Evaluate a dotted/bracketed path against parsed JSON.

    Returns the value (which may be None) or NOT_FOUND.
    """
    return resolve_tokens(data, parse_path(path))


def parse_placeholder(value: Any) -> Optional[tuple[int, str]]:
    """
    Return (step_index, path) when value is a whole-string placeholder,
    otherwise None. A leading dot on the path is dropped.
    """
    if not isinstance(value, str):
        return None
    match = _PLACEHOLDER_RE.match(value.strip())
    if not match:
        return None
    return int(match.group(1)), match.group(2).lstrip(".")


def contains_step_reference(value: Any) -> bool:
    """True when value is a string holding anything shaped like ``{{steps[``."""
    return isinstance(value, str) and bool(_REFERENCE_START_RE.search(value))
