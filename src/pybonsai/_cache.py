"""Path enumeration for state trees, memoised per container.

The cache relies on the stores' copy-on-write commits: a container that is
still referenced from the tree has not changed shape since it was indexed,
and any changed container is a new object with a new identity.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Mapping, Sequence
from typing import Any

from pybonsai._paths import ABSENT, SEPARATOR

DEFAULT_MAXSIZE = 1024


def _is_container(value: Any) -> bool:
    if isinstance(value, Mapping):
        return True
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _children(value: Any) -> list[tuple[str, Any]]:
    if isinstance(value, Mapping):
        return [(str(key), child) for key, child in value.items()]
    return [(str(index), child) for index, child in enumerate(value)]


def _prefixed(prefix: str, relative: list[str]) -> list[str]:
    if not prefix:
        return list(relative)
    return [f"{prefix}{SEPARATOR}{rel}" for rel in relative]


def all_paths(value: Any, prefix: str = "") -> list[str]:
    """Uncached enumeration of every path reachable in *value*.

    ``None``/``ABSENT`` and scalars are leaves and yield their own path.
    Containers yield their own path (when *prefix* is non-empty) followed by
    their children's paths, pre-order.
    """
    if not _is_container(value):
        if value is ABSENT:
            return []
        return [prefix] if prefix else []
    paths: list[str] = [prefix] if prefix else []
    for key, child in _children(value):
        child_path = f"{prefix}{SEPARATOR}{key}" if prefix else key
        paths.extend(all_paths(child, child_path))
    return paths


class PathIndexer:
    """Enumerate paths with a bounded identity-keyed LRU of container results.

    Each entry maps ``id(container)`` to ``(container, relative_paths)``.
    Holding the container keeps its ``id`` from being reused while the entry
    lives, and the bound keeps the cache from growing with every commit.
    """

    def __init__(self, maxsize: int = DEFAULT_MAXSIZE) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._maxsize = maxsize
        self._entries: OrderedDict[int, tuple[Any, tuple[str, ...]]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def index(self, value: Any, prefix: str = "") -> list[str]:
        """Return every path in *value*, each prefixed with *prefix*."""
        if not _is_container(value):
            if value is ABSENT:
                return []
            return [prefix] if prefix else []
        paths: list[str] = [prefix] if prefix else []
        paths.extend(_prefixed(prefix, list(self._relative(value))))
        return paths

    def _relative(self, container: Any) -> tuple[str, ...]:
        key = id(container)
        entry = self._entries.get(key)
        if entry is not None and entry[0] is container:
            self._entries.move_to_end(key)
            self.hits += 1
            return entry[1]

        self.misses += 1
        relative: list[str] = []
        for name, child in _children(container):
            relative.append(name)
            if _is_container(child):
                relative.extend(_prefixed(name, list(self._relative(child))))
        result = tuple(relative)
        self._entries[key] = (container, result)
        self._entries.move_to_end(key)
        while len(self._entries) > self._maxsize:
            self._entries.popitem(last=False)
        return result

    def invalidate(self, container: Any) -> None:
        """Drop the entry for *container*, if cached."""
        entry = self._entries.get(id(container))
        if entry is not None and entry[0] is container:
            del self._entries[id(container)]

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
