"""Persistence sinks used by the ``persist`` middleware.

A sink is an opaque key/value writer: ``write(key, serialized) -> bool``
(optionally awaitable). The store makes no transactional assumption about
it; a failed write is reported and the in-memory commit goes ahead.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Awaitable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import aiohttp

from pybonsai.exceptions import SinkWriteError

_logger = logging.getLogger(__name__)


@runtime_checkable
class Sink(Protocol):
    """Structural sink interface; tests pass simple doubles."""

    def write(self, key: str, serialized: str) -> bool | Awaitable[bool]:
        ...


class MemorySink:
    """Keeps the last written payload per key in a dict."""

    def __init__(self, *, fail_keys: set[str] | None = None) -> None:
        self.data: dict[str, str] = {}
        self.writes = 0
        self.fail_keys: set[str] = set(fail_keys or ())

    def write(self, key: str, serialized: str) -> bool:
        self.writes += 1
        if key in self.fail_keys:
            return False
        self.data[key] = serialized
        return True

    def read(self, key: str) -> Any:
        return json.loads(self.data[key])


class JsonFileSink:
    """Stores every key in one JSON object file.

    The whole file is rewritten on each write through a temporary file and
    ``os.replace``, so readers never see a half-written document. File I/O
    runs in a worker thread; writes from one sink are applied one at a time.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._entries: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, str]:
        if self._entries is None:
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                raw = {}
            except (OSError, ValueError) as exc:
                raise SinkWriteError(f"cannot read {self.path}: {exc}") from exc
            if not isinstance(raw, dict):
                raise SinkWriteError(f"{self.path} does not hold a JSON object")
            self._entries = {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in raw.items()}
        return self._entries

    async def write(self, key: str, serialized: str) -> bool:
        async with self._lock:
            return await asyncio.to_thread(self._write_file, key, serialized)

    def _write_file(self, key: str, serialized: str) -> bool:
        entries = dict(self._load())
        entries[key] = serialized
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(entries, handle, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise SinkWriteError(f"cannot write {self.path}: {exc}", key=key) from exc
        self._entries = entries
        return True

    def read_all(self) -> Mapping[str, str]:
        return dict(self._load())


class HttpSink:
    """PUTs each payload to ``{base_url}/{key}``.

    Any 2xx response counts as success, other statuses as a rejected
    write; network errors raise :class:`SinkWriteError`.
    """

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession,
        *,
        timeout: float = 10.0,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {"Content-Type": "application/json", **(headers or {})}

    def url_for(self, key: str) -> str:
        return f"{self._base_url}/{quote(key.lstrip('/'), safe='/')}"

    async def write(self, key: str, serialized: str) -> bool:
        url = self.url_for(key)
        try:
            async with self._session.put(
                url,
                data=serialized,
                headers=self._headers,
                timeout=self._timeout,
            ) as response:
                if 200 <= response.status < 300:
                    return True
                _logger.debug("Sink PUT %s returned HTTP %s", url, response.status)
                return False
        except aiohttp.ClientError as exc:
            raise SinkWriteError(f"PUT {url} failed: {exc}", key=key) from exc
