"""Scoped store construction.

There is no module-level default store: every call here builds an
independent instance with its own state, middleware and subscribers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Literal, overload

from pybonsai.config import StoreConfig
from pybonsai.middleware import WrapperMiddleware
from pybonsai.pipeline import Stage
from pybonsai.state.flat import FlatMiddleware, FlatStore
from pybonsai.state.tree import PathStore

_logger = logging.getLogger(__name__)

StoreMode = Literal["tree", "flat"]


def create_tree_store(
    initial_state: Any = None,
    *,
    middleware: Iterable[Stage | WrapperMiddleware] = (),
    config: StoreConfig | None = None,
) -> PathStore:
    """Build an isolated tree-mode store.

    *middleware* may mix plain stages and wrapper-style ones
    (``fn(next) -> handler``).
    """
    store = PathStore(initial_state, middleware=middleware, config=config)
    _logger.debug("Created tree store %r with %d middleware", store.name, len(store.list_middleware()))
    return store


def create_flat_store(
    initial_state: Mapping[str, Any] | None = None,
    *,
    middleware: Iterable[FlatMiddleware] = (),
    config: StoreConfig | None = None,
) -> FlatStore:
    store = FlatStore(initial_state, middleware=middleware, config=config)
    _logger.debug("Created flat store %r with %d middleware", store.name, len(store.list_middleware()))
    return store


@overload
def create_store(
    initial_state: Any = ...,
    *,
    mode: Literal["tree"] = ...,
    middleware: Iterable[Any] = ...,
    config: StoreConfig | None = ...,
) -> PathStore: ...


@overload
def create_store(
    initial_state: Any = ...,
    *,
    mode: Literal["flat"],
    middleware: Iterable[Any] = ...,
    config: StoreConfig | None = ...,
) -> FlatStore: ...


def create_store(
    initial_state: Any = None,
    *,
    mode: StoreMode = "tree",
    middleware: Iterable[Any] = (),
    config: StoreConfig | None = None,
) -> PathStore | FlatStore:
    """Build an isolated store of either model.

    Parameters
    ----------
    initial_state
        Initial tree (tree mode) or mapping (flat mode). Deep-copied.
    mode : {"tree", "flat"}
        Which store model to build.
    middleware
        Stages for the new store's own pipeline, in order.
    config : StoreConfig, optional
        Defaults to ``StoreConfig()``.

    Returns
    -------
    PathStore or FlatStore
    """
    if mode == "tree":
        return create_tree_store(initial_state, middleware=middleware, config=config)
    if mode == "flat":
        return create_flat_store(initial_state, middleware=middleware, config=config)
    raise ValueError(f"unknown store mode {mode!r} (expected 'tree' or 'flat')")
