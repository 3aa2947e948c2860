"""Helpers for safe debug logging.

Stores hold arbitrary application state, which routinely includes secrets
(passwords, tokens) and large blobs. Values pass through
:func:`redact_for_log` before they reach a log line or the dev log.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pybonsai._paths import ABSENT

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "accesstoken",
        "refreshtoken",
        "apikey",
        "api_key",
        "authorization",
        "cookie",
        "session",
    }
)


def is_sensitive_key(key: str) -> bool:
    return key.lower() in _SENSITIVE_VALUE_KEYS


def redact_for_log(value: Any, *, max_string: int = 512, max_items: int = 50, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None or value is ABSENT:
        return value

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for index, (k, v) in enumerate(value.items()):
            if index >= max_items:
                redacted["…"] = f"<{len(value) - max_items} more>"
                break
            key = str(k)
            if is_sensitive_key(key):
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        items = [
            redact_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for v in list(value)[:max_items]
        ]
        if len(value) > max_items:
            items.append(f"<{len(value) - max_items} more>")
        return items

    # Fallback: represent unknown objects without dumping internals.
    return repr(value)


def redact_path_value(path: str, value: Any, *, max_string: int = 512) -> Any:
    """Redact *value* written at *path*, hiding it entirely when the leaf key is sensitive."""
    leaf = path.rsplit("/", 1)[-1]
    if leaf and is_sensitive_key(leaf):
        return "<redacted>"
    return redact_for_log(value, max_string=max_string)
