"""Custom exception hierarchy for pybonsai.

None of these ever cross ``set``: the pipeline converts anything raised by a
stage into a reported fault and a ``SetOutcome(committed=False)``.
"""

from __future__ import annotations


class BonsaiError(Exception):
    """Base exception for all pybonsai errors."""


class BonsaiConfigError(BonsaiError):
    """Invalid store configuration (bad environment value, non-positive size)."""


class StageResultError(BonsaiError):
    """A middleware stage returned a result the store cannot commit.

    Raised inside the pipeline, e.g. when a flat-store stage replaces the
    merged state with something that is not a mapping. It is always
    converted to a stage fault.
    """

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class SinkWriteError(BonsaiError):
    """A persistence sink failed to store a value."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)
