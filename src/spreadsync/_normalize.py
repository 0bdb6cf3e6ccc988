"""Key, path and value normalization.

Keys are compared in their string form, so ``store[1]`` and ``store["1"]``
address the same slot.  Values are normalized into the shape peers will see
after a JSON round-trip so the local tree never differs from a replica.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

Path = tuple[str, ...]


def normalize_key(key: Any) -> str:
    return str(key)


def normalize_path(path: Iterable[Any]) -> Path:
    """Return *path* as a tuple of string keys.

    Raises :class:`ValueError` for an empty path and :class:`TypeError`
    when *path* is a bare string (almost always a forgotten list).
    """
    if isinstance(path, (str, bytes)):
        raise TypeError(f"path must be a sequence of keys, not {type(path).__name__}")
    normalized = tuple(normalize_key(segment) for segment in path)
    if not normalized:
        raise ValueError("path must contain at least one key")
    return normalized


def normalize_value(value: Any) -> Any:
    """Return a detached copy of *value* with JSON-shaped containers."""
    if isinstance(value, Mapping):
        return {normalize_key(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    return value
