"""Store configuration for pybonsai."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pybonsai._cache import DEFAULT_MAXSIZE
from pybonsai.devlog import DEFAULT_DEVLOG_SIZE
from pybonsai.exceptions import BonsaiConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(env_key: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as exc:
        raise BonsaiConfigError(f"{env_key} must be an integer, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class StoreConfig:
    """Store configuration.

    Parameters
    ----------
    name : str
        Label used in log lines and dev log events. Defaults to ``""``, in
        which case the store picks ``"tree"`` or ``"flat"``.
    serialize_writes : bool
        Run overlapping writes to the same path one after the other
        (per-path single-flight queue). Off by default: a ``debounce``
        stage only coalesces writes that overlap.
    devlog_size : int
        Number of events kept in the store's dev log.
    path_cache_size : int
        Maximum number of containers memoised by the path indexer.
    dev_mode : bool
        Also record every commit in the dev log (vetoes and faults are
        always recorded).
    """

    name: str = ""
    serialize_writes: bool = False
    devlog_size: int = DEFAULT_DEVLOG_SIZE
    path_cache_size: int = DEFAULT_MAXSIZE
    dev_mode: bool = False

    def __post_init__(self) -> None:
        if self.devlog_size <= 0:
            raise BonsaiConfigError(f"devlog_size must be positive, got {self.devlog_size}")
        if self.path_cache_size <= 0:
            raise BonsaiConfigError(f"path_cache_size must be positive, got {self.path_cache_size}")

    def with_name(self, name: str) -> StoreConfig:
        return dataclasses.replace(self, name=name)

    @classmethod
    def from_env(cls, **overrides: Any) -> StoreConfig:
        """Create configuration from ``BONSAI_*`` environment variables.

        Reads ``BONSAI_NAME``, ``BONSAI_SERIALIZE_WRITES``,
        ``BONSAI_DEVLOG_SIZE``, ``BONSAI_PATH_CACHE_SIZE`` and
        ``BONSAI_DEV_MODE``. Explicit keyword arguments override
        environment values.

        Raises
        ------
        BonsaiConfigError
            If a numeric variable does not parse or a size is not positive.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        name = env.get("BONSAI_NAME")
        if name is not None:
            config_kwargs["name"] = name.strip()

        if "serialize_writes" not in overrides:
            config_kwargs["serialize_writes"] = _env_bool(env.get("BONSAI_SERIALIZE_WRITES"), False)
        if "dev_mode" not in overrides:
            config_kwargs["dev_mode"] = _env_bool(env.get("BONSAI_DEV_MODE"), False)

        _ENV_INT_MAP = {
            "BONSAI_DEVLOG_SIZE": "devlog_size",
            "BONSAI_PATH_CACHE_SIZE": "path_cache_size",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_int(env_key, val)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
