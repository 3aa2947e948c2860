"""Per-path single-flight queue for store writes.

Overlapping ``set`` calls to the same normalised path run one after the
other, in arrival order; writes to different paths do not wait on each
other. Entries are dropped once no writer holds or waits for them, so the
arena only ever contains paths with writes in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field


@dataclass(slots=True)
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class PathWriteQueue:
    def __init__(self) -> None:
        self._slots: dict[str, _Slot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def in_flight(self, path: str) -> int:
        """Writers holding or waiting on *path*."""
        slot = self._slots.get(path)
        return slot.users if slot is not None else 0

    @contextlib.asynccontextmanager
    async def hold(self, path: str) -> AsyncIterator[None]:
        slot = self._slots.get(path)
        if slot is None:
            slot = _Slot()
            self._slots[path] = slot
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(path) is slot:
                del self._slots[path]
