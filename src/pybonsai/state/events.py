"""Store events and write outcomes.

Every veto, fault and (in dev mode) commit becomes a :class:`StoreEvent`.
Events are recorded in the owning store's dev log; they are never raised.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pybonsai._paths import normalize_path


class EventKind(StrEnum):
    COMMIT = "commit"
    VETO = "veto"
    STAGE_FAULT = "stage_fault"
    SINK_FAULT = "sink_fault"
    SUBSCRIBER_FAULT = "subscriber_fault"
    REJECTED = "rejected"


#: Kinds that indicate something went wrong rather than a deliberate decision.
FAULT_KINDS: frozenset[EventKind] = frozenset(
    {EventKind.STAGE_FAULT, EventKind.SINK_FAULT, EventKind.SUBSCRIBER_FAULT}
)


class StoreEvent(BaseModel):
    """A single entry on a store's reporting channel."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    store: str = Field(default="", description="Name of the reporting store")
    path: str = Field(default="", description="Normalised path of the write")
    reason: str | None = Field(default=None, description="Human-readable veto or fault reason")
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("path")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_path(value)

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def is_fault(self) -> bool:
        return self.kind in FAULT_KINDS

    def format(self) -> str:
        stamp = self.observed_at.astimezone().strftime("%H:%M:%S")
        where = self.path or "<root>"
        text = f"[{stamp}] {self.kind.value} {where}"
        if self.reason:
            text = f"{text}: {self.reason}"
        return text


class SetOutcome(BaseModel):
    """Result of ``set``: whether the write committed, and why not if it didn't."""

    model_config = ConfigDict(frozen=True)

    committed: bool
    reason: str | None = None
    fault: bool = False

    def __bool__(self) -> bool:
        return self.committed


COMMITTED = SetOutcome(committed=True)
