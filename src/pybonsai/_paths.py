"""Path normalisation shared by every read and write entry point.

Both ``get`` and ``set`` go through :func:`split_path`, so a path written as
``"/user//name/"`` and read back as ``"user/name"`` always address the same
node.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Final

SEPARATOR: Final = "/"


class _Absent:
    """Marker for "nothing stored here"; distinct from a stored ``None``."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "ABSENT"


ABSENT: Final = _Absent()

PathLike = str | Iterable[str | int]


def split_path(path: PathLike) -> tuple[str, ...]:
    """Return the non-empty segments of *path*.

    *path* is either a ``/``-delimited string or an iterable of segments;
    integer segments (sequence indexes) are converted with ``str``.
    """
    if isinstance(path, str):
        raw: Iterable[str | int] = path.split(SEPARATOR)
    else:
        raw = path
    segments: list[str] = []
    for part in raw:
        text = str(part)
        # Segments given as an iterable may still embed separators.
        segments.extend(piece for piece in text.split(SEPARATOR) if piece)
    return tuple(segments)


def join_path(segments: Iterable[str]) -> str:
    return SEPARATOR.join(segments)


def normalize_path(path: PathLike) -> str:
    """Normalise *path*: split, drop empty segments, rejoin."""
    return join_path(split_path(path))


def is_prefix(prefix: tuple[str, ...], segments: tuple[str, ...]) -> bool:
    """Segment-wise prefix test: ``("user",)`` is not a prefix of ``("user2",)``."""
    if len(prefix) > len(segments):
        return False
    return segments[: len(prefix)] == prefix


def sequence_index(segment: str, length: int, *, allow_append: bool = False) -> int | None:
    """Map a path segment onto a sequence index, or ``None`` if it does not fit.

    Only plain non-negative decimal segments are indexes; ``"-1"`` is not.
    """
    if not (segment.isascii() and segment.isdigit()):
        return None
    index = int(segment)
    limit = length + 1 if allow_append else length
    if index >= limit:
        return None
    return index
