"""Dot/bracket path addressing inside nested dict/list documents.

Paths are dot-separated keys; a key may carry one or more literal,
non-negative indexes, e.g. ``name[0].given[1]`` or ``matrix[1][0]``.
No wildcards, filters or slices.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from ehrmap.core.exceptions import PathError


class _Absent:
    """Sentinel for a path that does not resolve."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()

_SEGMENT = re.compile(r"^(?P<key>[^\[\]]+)(?P<indexes>(?:\[[^\[\]]*\])*)$")
_INDEX = re.compile(r"\[([^\[\]]*)\]")
_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class PathSegment:
    """A map key followed by zero or more list indexes."""

    key: str
    indexes: tuple[int, ...] = ()


@lru_cache(maxsize=1024)
def parse_path(path: str) -> tuple[PathSegment, ...]:
    """Parse a path into segments.

    Args:
        path: Path such as ``identifier[0].value``.

    Returns:
        Tuple of PathSegment.

    Raises:
        PathError: If the path is empty or an index is not a non-negative integer.
    """
    if not path or not path.strip():
        raise PathError("Path cannot be empty", path)

    segments = []
    for raw in path.split("."):
        match = _SEGMENT.match(raw)
        if match is None:
            raise PathError(f"Invalid path segment '{raw}'", path)

        indexes = []
        for index_text in _INDEX.findall(match.group("indexes")):
            if not _DIGITS.fullmatch(index_text):
                raise PathError(f"Invalid list index '[{index_text}]' in segment '{raw}'", path)
            indexes.append(int(index_text))

        segments.append(PathSegment(key=match.group("key"), indexes=tuple(indexes)))

    return tuple(segments)


def read_path(container: Any, path: str) -> Any:
    """Read a value at a path.

    Args:
        container: Root document.
        path: Path to read.

    Returns:
        The value, or ABSENT if any step is missing, out of bounds, or the
        wrong shape. Never raises.
    """
    try:
        segments = parse_path(path)
    except PathError:
        return ABSENT

    current = container
    for segment in segments:
        if not isinstance(current, dict) or segment.key not in current:
            return ABSENT
        current = current[segment.key]
        for index in segment.indexes:
            if not isinstance(current, list) or index >= len(current):
                return ABSENT
            current = current[index]
    return current


def has_path(container: Any, path: str) -> bool:
    """Return True if the path resolves to a value (which may be None)."""
    return read_path(container, path) is not ABSENT


def write_path(container: dict[str, Any], path: str, value: Any) -> None:
    """Write a value at a path, creating intermediate containers.

    Missing keys become dicts, missing lists are created, and lists are padded
    with None up to the requested index. The final step is a single assignment
    that overwrites any previous value.

    Raises:
        PathError: On a malformed path, or when an existing value along the
            path is not the container the path requires.
    """
    segments = parse_path(path)

    # Flatten into ("key", str) / ("index", int) steps.
    steps: list[tuple[str, Any]] = []
    for segment in segments:
        steps.append(("key", segment.key))
        steps.extend(("index", i) for i in segment.indexes)

    current: Any = container
    for position, (kind, token) in enumerate(steps):
        is_last = position == len(steps) - 1
        next_kind = None if is_last else steps[position + 1][0]

        if kind == "key":
            if not isinstance(current, dict):
                raise PathError(
                    f"Cannot set key '{token}' on {type(current).__name__}", path
                )
            if is_last:
                current[token] = value
                return
            child = current.get(token)
            if child is None:
                child = [] if next_kind == "index" else {}
                current[token] = child
            current = child
        else:
            if not isinstance(current, list):
                raise PathError(
                    f"Cannot index [{token}] into {type(current).__name__}", path
                )
            while len(current) <= token:
                current.append(None)
            if is_last:
                current[token] = value
                return
            if current[token] is None:
                current[token] = [] if next_kind == "index" else {}
            current = current[token]
