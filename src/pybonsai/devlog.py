"""Per-store reporting channel.

Each store owns a :class:`DevLog`: a bounded history of :class:`StoreEvent`
plus listeners for live tooling. Middleware stages have no handle on the
store running them, so the pipeline publishes the active log through a
context variable and stages call :func:`report`.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from collections import deque
from collections.abc import Callable, Iterator

from pybonsai.state.events import EventKind, StoreEvent

_logger = logging.getLogger(__name__)

DEFAULT_DEVLOG_SIZE = 100

EventListener = Callable[[StoreEvent], None]

_current_log: contextvars.ContextVar[DevLog | None] = contextvars.ContextVar("pybonsai_devlog", default=None)


class DevLog:
    """Bounded in-memory event history for one store."""

    def __init__(self, store_name: str = "", *, maxlen: int = DEFAULT_DEVLOG_SIZE) -> None:
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self.store_name = store_name
        self._events: deque[StoreEvent] = deque(maxlen=maxlen)
        self._listeners: dict[int, EventListener] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._events)

    @property
    def maxlen(self) -> int:
        return self._events.maxlen or 0

    def record(self, kind: EventKind, path: str = "", reason: str | None = None) -> StoreEvent:
        event = StoreEvent(kind=kind, store=self.store_name, path=path, reason=reason)
        self._events.append(event)
        for listener in list(self._listeners.values()):
            try:
                listener(event)
            except Exception:
                _logger.debug("devlog listener failed", exc_info=True)
        return event

    def entries(self, kind: EventKind | None = None) -> list[StoreEvent]:
        """Return a copy of the history, optionally filtered by *kind*."""
        if kind is None:
            return list(self._events)
        return [event for event in self._events if event.kind == kind]

    def lines(self) -> list[str]:
        return [event.format() for event in self._events]

    def clear(self) -> None:
        self._events.clear()

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """Call *listener* for every new event; returns a remover."""
        token = self._next_id
        self._next_id += 1
        self._listeners[token] = listener

        def remove() -> None:
            self._listeners.pop(token, None)

        return remove


@contextlib.contextmanager
def reporting_to(log: DevLog) -> Iterator[None]:
    """Make *log* the target of :func:`report` for the enclosed block."""
    token = _current_log.set(log)
    try:
        yield
    finally:
        _current_log.reset(token)


def current_devlog() -> DevLog | None:
    return _current_log.get()


def report(kind: EventKind, path: str = "", reason: str | None = None) -> StoreEvent | None:
    """Record an event on the dev log of the store whose pipeline is running.

    Outside a pipeline run there is no store to report to; the event is only
    logged.
    """
    log = _current_log.get()
    if log is None:
        _logger.debug("%s on %r outside a store pipeline: %s", kind.value, path, reason)
        return None
    return log.record(kind, path, reason)
