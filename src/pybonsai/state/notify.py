"""Prefix subscriptions and change fan-out."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pybonsai._paths import is_prefix, join_path, split_path
from pybonsai.devlog import DevLog
from pybonsai.pipeline import stage_name
from pybonsai.state.events import EventKind

_logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True, slots=True)
class Subscription:
    prefix: tuple[str, ...]
    callback: Callback

    @property
    def path(self) -> str:
        return join_path(self.prefix)


class Notifier:
    """Registry of ``(prefix, callback)`` subscriptions.

    ``notify(changed)`` calls every subscription whose prefix is a
    segment-wise ancestor of, or equal to, the changed path. Each callback
    receives ``getter(prefix)`` evaluated when it is called, so a subscriber
    on ``"user"`` sees the whole updated ``user`` node after a change to
    ``"user/name"``.
    """

    def __init__(self, getter: Callable[[str], Any], *, devlog: DevLog | None = None) -> None:
        self._getter = getter
        self._devlog = devlog
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        if not callable(callback):
            raise TypeError(f"callback must be callable, got {type(callback).__name__}")
        token = next(self._ids)
        self._subscriptions[token] = Subscription(prefix=split_path(path), callback=callback)

        def unsubscribe() -> None:
            self._subscriptions.pop(token, None)

        return unsubscribe

    def matching(self, changed_path: str) -> list[Subscription]:
        segments = split_path(changed_path)
        return [sub for sub in self._subscriptions.values() if is_prefix(sub.prefix, segments)]

    def notify(self, changed_path: str) -> int:
        """Fan out a committed change; returns the number of callbacks invoked."""
        # Callbacks may subscribe or unsubscribe while we iterate.
        matched = self.matching(changed_path)
        fired = 0
        for sub in matched:
            value = self._getter(sub.path)
            fired += 1
            try:
                sub.callback(value)
            except Exception as exc:
                _logger.warning(
                    "Subscriber %s on %r failed",
                    stage_name(sub.callback),
                    sub.path,
                    exc_info=True,
                )
                if self._devlog is not None:
                    self._devlog.record(
                        EventKind.SUBSCRIBER_FAULT,
                        changed_path,
                        f"{stage_name(sub.callback)} raised {type(exc).__name__}: {exc}",
                    )
        return fired
