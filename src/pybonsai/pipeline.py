"""Ordered, short-circuiting middleware pipeline.

A stage is called as ``stage(path, proposed, previous)`` and returns one of
the tagged results below, either directly or through an awaitable. Plain
return values are accepted too: ``None`` means "unchanged" and anything else
replaces the candidate. ``False`` is an ordinary value; only :class:`Veto`
stops a write.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Final, Generic, TypeVar

from pybonsai._redact import redact_path_value
from pybonsai.devlog import DevLog, reporting_to
from pybonsai.state.events import EventKind

_logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Replace(Generic[T]):
    """Continue with *value* as the candidate."""

    value: T


@dataclass(frozen=True, slots=True)
class Veto:
    """Reject the write. *reason* ends up in the outcome and the dev log."""

    reason: str | None = None


class _Unchanged:
    _instance: _Unchanged | None = None

    def __new__(cls) -> _Unchanged:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCHANGED"


UNCHANGED: Final = _Unchanged()

StageResult = Replace[Any] | Veto | _Unchanged
Stage = Callable[[str, Any, Any], Any]
"""``(path, proposed, previous) -> StageResult | value | None`` or an awaitable of one."""


def coerce_result(result: Any) -> StageResult:
    """Map a stage's raw return value onto a tagged result."""
    if isinstance(result, (Replace, Veto, _Unchanged)):
        return result
    if result is None:
        return UNCHANGED
    return Replace(result)


def stage_name(stage: Callable[..., Any]) -> str:
    name = getattr(stage, "__qualname__", None) or getattr(stage, "__name__", None)
    return name or type(stage).__name__


@dataclass(frozen=True, slots=True)
class PipelineResult:
    accepted: bool
    value: Any = None
    reason: str | None = None
    fault: bool = False


class MiddlewarePipeline:
    """An ordered list of stages applied to every proposed write.

    Stages run strictly one at a time in registration order; an awaitable
    result is awaited before the next stage starts. A stage that raises (or
    whose awaitable fails) is a *stage fault*: the write is vetoed and the
    fault is reported on the dev log, never propagated.
    """

    def __init__(self, stages: Iterable[Stage] = (), *, devlog: DevLog | None = None) -> None:
        self._stages: list[Stage] = list(stages)
        self.devlog = devlog if devlog is not None else DevLog()

    def __len__(self) -> int:
        return len(self._stages)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add(self, stage: Stage) -> None:
        if not callable(stage):
            raise TypeError(f"middleware must be callable, got {type(stage).__name__}")
        self._stages.append(stage)
        _logger.debug("Middleware registered: %s", stage_name(stage))

    def remove(self, stage: Stage) -> bool:
        """Remove the first registration of *stage* (by identity)."""
        for index, registered in enumerate(self._stages):
            if registered is stage:
                del self._stages[index]
                return True
        return False

    def clear(self) -> None:
        self._stages = []

    def stages(self) -> list[Stage]:
        return list(self._stages)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self, path: str, proposed: Any, previous: Any) -> PipelineResult:
        # Stages added or removed while a write is suspended apply to the next write.
        stages = list(self._stages)
        candidate = proposed
        with reporting_to(self.devlog):
            for stage in stages:
                try:
                    result = stage(path, candidate, previous)
                    if inspect.isawaitable(result):
                        result = await result
                    outcome = coerce_result(result)
                except Exception as exc:
                    reason = f"{stage_name(stage)} raised {type(exc).__name__}: {exc}"
                    _logger.warning("Middleware fault on %r: %s", path, reason, exc_info=True)
                    self.devlog.record(EventKind.STAGE_FAULT, path, reason)
                    return PipelineResult(accepted=False, reason=reason, fault=True)

                if isinstance(outcome, Veto):
                    _logger.info(
                        "Update blocked by %s at %r: %s",
                        stage_name(stage),
                        path,
                        outcome.reason or "no reason given",
                    )
                    self.devlog.record(EventKind.VETO, path, outcome.reason)
                    return PipelineResult(accepted=False, reason=outcome.reason)
                if isinstance(outcome, Replace):
                    candidate = outcome.value

        if _logger.isEnabledFor(logging.DEBUG) and stages:
            _logger.debug("Pipeline accepted %r -> %r", path, redact_path_value(path, candidate))
        return PipelineResult(accepted=True, value=candidate)


async def resolve(result: Any) -> Any:
    """Await *result* if it is awaitable; stages use this to call nested handlers."""
    if inspect.isawaitable(result):
        return await result
    return result


AsyncStage = Callable[[str, Any, Any], Awaitable[Any]]
