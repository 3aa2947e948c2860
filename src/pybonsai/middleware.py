"""Ready-made middleware stages.

Every factory returns a fresh stage with its own private state, so two
stores (or two registrations on one store) never share debounce timers or
rate-limit clocks.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pybonsai._paths import ABSENT
from pybonsai._redact import redact_path_value
from pybonsai.devlog import report
from pybonsai.pipeline import UNCHANGED, AsyncStage, Replace, Stage, StageResult, Veto, resolve, stage_name
from pybonsai.sinks import Sink
from pybonsai.state.events import EventKind

_logger = logging.getLogger(__name__)

#: Sink key used when a write to the root path is persisted without an explicit key.
ROOT_KEY = "$root"

SUPERSEDED_REASON = "superseded by a newer write"


def _previous_or_veto(previous: Any, reason: str) -> StageResult:
    # Nothing to fall back to when the path has never been written.
    if previous is ABSENT:
        return Veto(reason)
    return Replace(previous)


# ---------------------------------------------------------------------------
# Validation and logging
# ---------------------------------------------------------------------------


def validator(check: Callable[[str, Any, Any], bool | str]) -> Stage:
    """Veto writes that fail *check*.

    *check* receives ``(path, next_value, prev_value)`` and returns ``True``
    to accept, ``False`` to veto, or a string to veto with that message as
    the reason.
    """

    def stage(path: str, next_value: Any, prev_value: Any) -> StageResult:
        result = check(path, next_value, prev_value)
        if isinstance(result, str):
            return Veto(result)
        if result:
            return UNCHANGED
        return Veto(f"validation failed: {stage_name(check)}")

    stage.__qualname__ = f"validator({stage_name(check)})"
    return stage


def logger(
    *,
    log_path: bool = True,
    log_value: bool = True,
    log_prev_value: bool = False,
    level: int = logging.DEBUG,
    target: logging.Logger | None = None,
) -> Stage:
    """Log every proposed write and pass it through unchanged."""
    log = target or _logger

    def stage(path: str, next_value: Any, prev_value: Any) -> StageResult:
        if not log.isEnabledFor(level):
            return UNCHANGED
        parts: list[str] = ["State update"]
        args: list[Any] = []
        if log_path:
            parts.append("path=%r")
            args.append(path)
        if log_value:
            parts.append("value=%r")
            args.append(redact_path_value(path, next_value))
        if log_prev_value:
            parts.append("previous=%r")
            args.append(redact_path_value(path, prev_value))
        log.log(level, " ".join(parts), *args)
        return UNCHANGED

    return stage


# ---------------------------------------------------------------------------
# Timing: debounce, rate limit, time window
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _PendingResolution:
    future: asyncio.Future[StageResult]
    handle: asyncio.TimerHandle


def debounce(delay: float) -> Stage:
    """Hold each write for *delay* seconds; only the latest write per path survives.

    A newer write to the same path cancels the older pending resolution,
    which then resolves as a veto so its ``set`` call returns instead of
    hanging.
    """
    if delay < 0:
        raise ValueError("delay must be >= 0")
    pending: dict[str, _PendingResolution] = {}

    async def stage(path: str, next_value: Any, prev_value: Any) -> StageResult:
        loop = asyncio.get_running_loop()
        older = pending.pop(path, None)
        if older is not None:
            older.handle.cancel()
            if not older.future.done():
                older.future.set_result(Veto(SUPERSEDED_REASON))

        future: asyncio.Future[StageResult] = loop.create_future()

        def fire() -> None:
            current = pending.get(path)
            if current is not None and current.future is future:
                del pending[path]
            if not future.done():
                future.set_result(Replace(next_value))

        pending[path] = _PendingResolution(future=future, handle=loop.call_later(delay, fire))
        try:
            return await future
        finally:
            # Caller cancelled: drop the timer so it cannot resolve later.
            current = pending.get(path)
            if current is not None and current.future is future:
                current.handle.cancel()
                del pending[path]

    stage.__qualname__ = f"debounce({delay})"
    return stage


def rate_limit(interval: float, *, clock: Callable[[], float] = time.monotonic) -> Stage:
    """Hold writes to a path that arrive less than *interval* seconds apart.

    A held write resolves to the value already stored at the path, so the
    commit is a no-op rewrite. When there is no stored value the write is
    vetoed instead.
    """
    if interval <= 0:
        raise ValueError("interval must be > 0")
    last_accepted: dict[str, float] = {}

    def stage(path: str, next_value: Any, prev_value: Any) -> StageResult:
        now = clock()
        stamp = last_accepted.get(path)
        if stamp is not None and now - stamp < interval:
            return _previous_or_veto(prev_value, f"rate limited: less than {interval}s since last update")
        last_accepted[path] = now
        if len(last_accepted) > 1024:
            for stale in [key for key, seen in last_accepted.items() if now - seen >= interval]:
                del last_accepted[stale]
        return UNCHANGED

    stage.__qualname__ = f"rate_limit({interval})"
    return stage


def throttle(limit: float, *, clock: Callable[[], float] = time.monotonic) -> Stage:
    """Allow at most *limit* updates per second per path."""
    if limit <= 0:
        raise ValueError("limit must be > 0")
    return rate_limit(1.0 / limit, clock=clock)


def time_window(
    allowed_hours: Collection[int],
    *,
    clock: Callable[[], datetime] = datetime.now,
) -> Stage:
    """Only let updates through during *allowed_hours* (0-23, local time)."""
    hours = frozenset(allowed_hours)
    invalid = [hour for hour in hours if not 0 <= hour <= 23]
    if invalid:
        raise ValueError(f"hours must be within 0-23, got {sorted(invalid)}")

    def stage(path: str, next_value: Any, prev_value: Any) -> StageResult:
        hour = clock().hour
        if hour in hours:
            return UNCHANGED
        _logger.warning("Updates not allowed during hour %d (path %r)", hour, path)
        return _previous_or_veto(prev_value, f"updates not allowed during hour {hour}")

    return stage


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------


def _json_dumps(value: Any) -> str:
    return json.dumps(value, default=repr, sort_keys=True)


def persist(
    sink: Sink,
    key: str | None = None,
    *,
    serializer: Callable[[Any], str] = _json_dumps,
) -> Stage:
    """Write every proposed value through to *sink*.

    The key defaults to the written path (:data:`ROOT_KEY` for the root).
    Sink failures never veto: they are reported as sink faults and the
    value passes on unchanged. Register this stage last so it only sees
    values that no later stage can still reject.
    """

    async def stage(path: str, next_value: Any, prev_value: Any) -> StageResult:
        target = key if key is not None else (path or ROOT_KEY)
        try:
            payload = serializer(next_value)
            ok = await resolve(sink.write(target, payload))
        except Exception as exc:
            _logger.warning("Failed to persist %r", target, exc_info=True)
            report(EventKind.SINK_FAULT, path, f"write to {target!r} failed: {exc}")
            return UNCHANGED
        if ok is False:
            _logger.warning("Sink rejected write to %r", target)
            report(EventKind.SINK_FAULT, path, f"sink rejected write to {target!r}")
        return UNCHANGED

    stage.__qualname__ = f"persist({type(sink).__name__})"
    return stage


def async_stage(handler: AsyncStage, *, timeout: float | None = None) -> Stage:
    """Wrap a coroutine handler as a stage, optionally bounded by *timeout*.

    A handler that raises or times out is a stage fault, which vetoes the
    write (the pipeline reports it).
    """

    async def stage(path: str, next_value: Any, prev_value: Any) -> Any:
        if timeout is None:
            return await handler(path, next_value, prev_value)
        async with asyncio.timeout(timeout):
            return await handler(path, next_value, prev_value)

    stage.__qualname__ = f"async_stage({stage_name(handler)})"
    return stage


# ---------------------------------------------------------------------------
# Wrapper-style middleware
# ---------------------------------------------------------------------------

WrapperMiddleware = Callable[[Callable[[str, Any], Any]], Callable[..., Any]]


def _passthrough(path: str, value: Any) -> Any:
    return value


def _is_wrapper_style(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
    positional = [p for p in params.values() if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
    return len(params) == 1 and len(positional) == 1


def adapt_middleware(fn: Stage | WrapperMiddleware) -> Stage:
    """Accept either a plain stage or a wrapper-style one.

    Wrapper-style middleware takes a single ``next`` callable and returns the
    handler ``(path, value, previous) -> value``; a ``None`` result from the
    handler leaves the value unchanged.
    """
    if not _is_wrapper_style(fn):
        return fn
    handler = fn(_passthrough)  # type: ignore[call-arg]

    async def stage(path: str, next_value: Any, prev_value: Any) -> Any:
        result = await resolve(handler(path, next_value, prev_value))
        return UNCHANGED if result is None else result

    stage.__qualname__ = stage_name(fn)
    return stage


__all__ = [
    "ROOT_KEY",
    "SUPERSEDED_REASON",
    "adapt_middleware",
    "async_stage",
    "debounce",
    "logger",
    "persist",
    "rate_limit",
    "throttle",
    "time_window",
    "validator",
]
