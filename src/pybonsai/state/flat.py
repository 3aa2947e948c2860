"""Flat key-value store: one shallow merge per write."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from pybonsai._redact import redact_for_log
from pybonsai.config import StoreConfig
from pybonsai.devlog import DevLog
from pybonsai.exceptions import StageResultError
from pybonsai.pipeline import MiddlewarePipeline, Replace, StageResult, coerce_result, resolve, stage_name
from pybonsai.state.events import COMMITTED, EventKind, SetOutcome
from pybonsai.state.notify import Notifier, Unsubscribe
from pybonsai.state.queue import PathWriteQueue

_logger = logging.getLogger(__name__)

T = TypeVar("T")

State = dict[str, Any]
FlatMiddleware = Callable[[State, State], Any]
"""``(next_state, prev_state) -> StageResult | state | None`` or an awaitable of one."""
FlatListener = Callable[[State], None]

# The flat store has a single unit of change; it goes through the pipeline as the root path.
_FLAT_PATH = ""


def _flat_stage(middleware: FlatMiddleware) -> Callable[[str, State, State], Any]:
    async def stage(path: str, next_state: State, prev_state: State) -> StageResult:
        outcome = coerce_result(await resolve(middleware(next_state, prev_state)))
        if isinstance(outcome, Replace) and not isinstance(outcome.value, Mapping):
            raise StageResultError(
                f"replaced the state with {type(outcome.value).__name__}, expected a mapping",
                path=path,
            )
        return outcome

    stage.__qualname__ = stage_name(middleware)
    return stage


class FlatStore:
    """Flat-mode store.

    ``set(partial)`` shallow-merges *partial* onto the current state, runs
    the merged state through every middleware ``(next_state, prev_state)``,
    and commits only if none vetoes; a veto discards the whole merge.
    Subscribers receive the new state after every commit.
    """

    def __init__(
        self,
        initial_state: Mapping[str, Any] | None = None,
        *,
        middleware: Iterable[FlatMiddleware] = (),
        config: StoreConfig | None = None,
    ) -> None:
        self._config = config or StoreConfig()
        self.name = self._config.name or "flat"
        self.devlog = DevLog(self.name, maxlen=self._config.devlog_size)
        self._pipeline = MiddlewarePipeline(devlog=self.devlog)
        self._registered: list[tuple[FlatMiddleware, Callable[..., Any]]] = []
        self._notifier = Notifier(lambda _path: self._state, devlog=self.devlog)
        self._queue = PathWriteQueue() if self._config.serialize_writes else None
        self._state: State = dict(copy.deepcopy(initial_state)) if initial_state else {}
        for fn in middleware:
            self.add_middleware(fn)

    @property
    def config(self) -> StoreConfig:
        return self._config

    def get(self) -> State:
        """Current state. Each commit installs a new dict; treat this one as read-only."""
        return self._state

    def select(self, selector: Callable[[State], T]) -> T:
        return selector(self._state)

    async def set(self, partial: Mapping[str, Any]) -> SetOutcome:
        if not isinstance(partial, Mapping):
            raise TypeError(f"partial state must be a mapping, got {type(partial).__name__}")
        if self._queue is None:
            return await self._write(partial)
        async with self._queue.hold(_FLAT_PATH):
            return await self._write(partial)

    async def _write(self, partial: Mapping[str, Any]) -> SetOutcome:
        previous = self._state
        try:
            owned = copy.deepcopy(dict(partial))
        except Exception as exc:
            reason = f"value cannot be copied into the store: {exc}"
            _logger.info("Write to %s rejected: %s", self.name, reason)
            self.devlog.record(EventKind.REJECTED, _FLAT_PATH, reason)
            return SetOutcome(committed=False, reason=reason)
        merged: State = {**previous, **owned}
        result = await self._pipeline.run(_FLAT_PATH, merged, previous)
        if not result.accepted:
            return SetOutcome(committed=False, reason=result.reason, fault=result.fault)

        self._state = dict(result.value)
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("[%s] SET %r", self.name, redact_for_log(self._state))
        if self._config.dev_mode:
            self.devlog.record(EventKind.COMMIT, _FLAT_PATH)
        self._notifier.notify(_FLAT_PATH)
        return COMMITTED

    def subscribe(self, callback: FlatListener) -> Unsubscribe:
        return self._notifier.subscribe(_FLAT_PATH, callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._notifier)

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    def add_middleware(self, middleware: FlatMiddleware) -> None:
        stage = _flat_stage(middleware)
        self._pipeline.add(stage)
        self._registered.append((middleware, stage))

    def remove_middleware(self, middleware: FlatMiddleware) -> bool:
        for index, (registered, stage) in enumerate(self._registered):
            if registered is middleware:
                del self._registered[index]
                return self._pipeline.remove(stage)
        return False

    def clear_middleware(self) -> None:
        self._registered.clear()
        self._pipeline.clear()

    def list_middleware(self) -> list[FlatMiddleware]:
        return [registered for registered, _ in self._registered]
