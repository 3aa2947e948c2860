"""Hierarchical, path-addressable store.

The tree is a nest of ``dict``/``list``/``tuple`` containers and scalars,
addressed by ``/``-delimited paths (``""`` is the whole tree). Commits are
copy-on-write along the written path: each ancestor container is copied,
never mutated, so untouched subtrees keep their identity and any snapshot
handed out by :meth:`PathStore.get` stays valid.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pybonsai._cache import PathIndexer
from pybonsai._paths import ABSENT, PathLike, normalize_path, sequence_index, split_path
from pybonsai._redact import redact_path_value
from pybonsai.config import StoreConfig
from pybonsai.devlog import DevLog
from pybonsai.middleware import WrapperMiddleware, adapt_middleware
from pybonsai.pipeline import MiddlewarePipeline, Stage
from pybonsai.state.events import COMMITTED, EventKind, SetOutcome
from pybonsai.state.notify import Callback, Notifier, Unsubscribe
from pybonsai.state.queue import PathWriteQueue

_logger = logging.getLogger(__name__)


class _PlacementError(Exception):
    """The write cannot be placed in the current tree shape."""


def _is_sequence(node: Any) -> bool:
    return isinstance(node, Sequence) and not isinstance(node, (str, bytes, bytearray))


def _lookup(node: Any, segments: tuple[str, ...]) -> Any:
    for segment in segments:
        if isinstance(node, Mapping):
            if segment not in node:
                return ABSENT
            node = node[segment]
        elif _is_sequence(node):
            index = sequence_index(segment, len(node))
            if index is None:
                return ABSENT
            node = node[index]
        else:
            return ABSENT
    return node


def _assoc(node: Any, segments: tuple[str, ...], value: Any, replaced: list[Any]) -> Any:
    """Return a copy of *node* with *value* placed at *segments*.

    Containers that get copied are appended to *replaced*.
    """
    if not segments:
        return value
    head, rest = segments[0], segments[1:]

    if isinstance(node, Mapping):
        replaced.append(node)
        updated = dict(node)
        child = node[head] if head in node else {}
        updated[head] = _assoc(child, rest, value, replaced)
        return updated

    if _is_sequence(node):
        index = sequence_index(head, len(node), allow_append=True)
        if index is None:
            raise _PlacementError(f"segment {head!r} is not an index into a sequence of length {len(node)}")
        replaced.append(node)
        items = list(node)
        if index == len(items):
            items.append(_assoc({}, rest, value, replaced))
        else:
            items[index] = _assoc(items[index], rest, value, replaced)
        return tuple(items) if isinstance(node, tuple) else items

    # Scalar (or None) in the way of a deeper write: the write wins.
    return {head: _assoc({}, rest, value, replaced)}


class PathStore:
    """Tree-mode store: ``get``/``set``/``subscribe`` by path.

    Every ``set`` runs the middleware pipeline with ``(path, value,
    get(path))``. A veto or stage fault leaves the tree and all subscribers
    untouched; otherwise the value is committed and subscribers on the path
    or any ancestor are notified, after the new tree is in place.

    Concurrency: overlapping ``set`` calls to the same path interleave at
    their middleware suspension points, so the previous value a call
    validated against may be stale when it commits (lost update). Construct
    the store with ``StoreConfig(serialize_writes=True)`` to run same-path
    writes one at a time; disjoint paths still proceed concurrently.

    Usage::

        store = PathStore({"user": {"name": "Ada"}})
        unsubscribe = store.subscribe("user", print)
        await store.set("user/name", "Grace")
    """

    def __init__(
        self,
        initial_state: Any = None,
        *,
        middleware: Iterable[Stage | WrapperMiddleware] = (),
        config: StoreConfig | None = None,
    ) -> None:
        self._config = config or StoreConfig()
        self.name = self._config.name or "tree"
        self.devlog = DevLog(self.name, maxlen=self._config.devlog_size)
        self._pipeline = MiddlewarePipeline(devlog=self.devlog)
        self._registered: list[tuple[Stage | WrapperMiddleware, Stage]] = []
        self._notifier = Notifier(self.get, devlog=self.devlog)
        self._indexer = PathIndexer(self._config.path_cache_size)
        self._queue = PathWriteQueue() if self._config.serialize_writes else None
        self._root: Any = {}
        self.initialize(initial_state, list(middleware))

    @property
    def config(self) -> StoreConfig:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(
        self,
        initial_tree: Any = None,
        middleware: Iterable[Stage | WrapperMiddleware] | None = None,
    ) -> None:
        """Reset the store: replace the root and the whole middleware list.

        This is a full reset, not a merge. Subscriptions are kept but are
        not notified of the new root.
        """
        self._root = {} if initial_tree is None else copy.deepcopy(initial_tree)
        self.clear_middleware()
        for fn in middleware or ():
            self.add_middleware(fn)
        self._indexer.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, path: PathLike = "") -> Any:
        """Return the value at *path*, or ``ABSENT``. Never raises.

        The returned value is shared with the store; treat it as read-only.
        """
        return _lookup(self._root, split_path(path))

    def has(self, path: PathLike) -> bool:
        return self.get(path) is not ABSENT

    def paths(self, path: PathLike = "") -> list[str]:
        """Every path at or below *path* (the root itself is not listed)."""
        normalized = normalize_path(path)
        return self._indexer.index(self.get(normalized), normalized)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(self, path: PathLike, value: Any) -> SetOutcome:
        normalized = normalize_path(path)
        if self._queue is None:
            return await self._write(normalized, value)
        async with self._queue.hold(normalized):
            return await self._write(normalized, value)

    async def _write(self, path: str, value: Any) -> SetOutcome:
        previous = self.get(path)
        result = await self._pipeline.run(path, value, previous)
        if not result.accepted:
            return SetOutcome(committed=False, reason=result.reason, fault=result.fault)
        return self._commit(path, result.value)

    def _reject(self, path: str, reason: str) -> SetOutcome:
        _logger.info("Write to %r rejected: %s", path, reason)
        self.devlog.record(EventKind.REJECTED, path, reason)
        return SetOutcome(committed=False, reason=reason)

    def _commit(self, path: str, value: Any) -> SetOutcome:
        if value is ABSENT:
            return self._reject(path, "cannot store ABSENT")
        try:
            owned = copy.deepcopy(value)
        except Exception as exc:
            return self._reject(path, f"value cannot be copied into the store: {exc}")

        replaced: list[Any] = []
        try:
            new_root = _assoc(self._root, split_path(path), owned, replaced)
        except _PlacementError as exc:
            return self._reject(path, str(exc))

        for container in replaced:
            self._indexer.invalidate(container)
        if not path:
            self._indexer.invalidate(self._root)
        self._root = new_root

        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("[%s] SET %r = %r", self.name, path, redact_path_value(path, owned))
        if self._config.dev_mode:
            self.devlog.record(EventKind.COMMIT, path)
        self._notifier.notify(path)
        return COMMITTED

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, path: PathLike, callback: Callback) -> Unsubscribe:
        """Call ``callback(get(path))`` after every commit at or below *path*.

        Returns a function that removes exactly this registration; calling
        it again is a no-op.
        """
        return self._notifier.subscribe(normalize_path(path), callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._notifier)

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    def add_middleware(self, middleware: Stage | WrapperMiddleware) -> None:
        stage = adapt_middleware(middleware)
        self._pipeline.add(stage)
        self._registered.append((middleware, stage))

    def remove_middleware(self, middleware: Stage | WrapperMiddleware) -> bool:
        """Remove the first registration of *middleware*, matched by identity with what was added."""
        for index, (registered, stage) in enumerate(self._registered):
            if registered is middleware:
                del self._registered[index]
                return self._pipeline.remove(stage)
        return False

    def clear_middleware(self) -> None:
        self._registered.clear()
        self._pipeline.clear()

    def list_middleware(self) -> list[Stage | WrapperMiddleware]:
        return [registered for registered, _ in self._registered]

