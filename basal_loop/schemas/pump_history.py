"""Pump history schemas.

Raw pump events as reported by the driver, and the classified
PumpHistoryEvent records held in the ledger.
"""

import hashlib
from datetime import datetime, timedelta

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from basal_loop.core.enums import EventKind, RawEventType


class RawDose(BaseModel):
    """Dose details attached to a raw bolus or temp basal event."""

    model_config = ConfigDict(frozen=True)

    start_date: AwareDatetime
    end_date: AwareDatetime
    units: float | None = Field(
        default=None,
        ge=0,
        description="Programmed units, in deliverable increments (boluses).",
    )
    units_per_hour: float | None = Field(
        default=None, ge=0, description="Programmed rate (temp basals)."
    )
    delivered_units: float | None = Field(
        default=None, ge=0, description="Units the pump confirmed as delivered."
    )
    automatic: bool | None = None
    is_mutable: bool = False

    @property
    def duration(self) -> timedelta:
        return self.end_date - self.start_date


class RawPumpEvent(BaseModel):
    """A history record reported by the pump driver."""

    model_config = ConfigDict(frozen=True)

    raw: bytes = Field(min_length=1, description="Raw history record bytes.")
    type: RawEventType
    date: AwareDatetime
    dose: RawDose | None = None

    @property
    def event_id(self) -> str:
        """Content-derived ID, stable across re-reports of the same record."""
        return hashlib.md5(self.raw, usedforsecurity=False).hexdigest()


class PumpHistoryEvent(BaseModel):
    """A classified pump history event.

    Only the payload fields relevant to ``kind`` are populated. A temp
    basal is stored as two events with the same timestamp: the
    ``temp_basal_duration`` parent with ``id`` and the
    ``temp_basal_rate`` child with ``"_" + id``.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str = Field(min_length=1)
    kind: EventKind
    timestamp: AwareDatetime
    amount: float | None = None
    delivered_units: float | None = None
    rate: float | None = None
    duration_minutes: int | None = None
    carb_input: int | None = None
    automatic: bool | None = None

    @property
    def effective_insulin_amount(self) -> float | None:
        """Delivered units when the pump confirmed them, else the programmed amount."""
        if self.delivered_units is not None:
            return self.delivered_units
        return self.amount

    @property
    def is_bolus(self) -> bool:
        return self.kind in (EventKind.bolus, EventKind.smb, EventKind.smb_basal)


def rate_event_id(duration_event_id: str) -> str:
    """ID of the temp basal rate event paired with a duration event."""
    return "_" + duration_event_id


class TempBasalState(BaseModel):
    """The most recent temp basal recorded in the ledger."""

    model_config = ConfigDict(frozen=True)

    rate: float
    started_at: AwareDatetime
    duration_minutes: int

    @property
    def ends_at(self) -> datetime:
        return self.started_at + timedelta(minutes=self.duration_minutes)

    def remaining_minutes(self, at: datetime) -> int:
        """Whole minutes left before the temp basal expires."""
        elapsed = int((at - self.started_at).total_seconds() // 60)
        return max(0, self.duration_minutes - elapsed)

    def is_active(self, at: datetime) -> bool:
        return self.remaining_minutes(at) > 0


class PumpHistoryResponse(BaseModel):
    """Response schema for the pump history ledger."""

    events: list[PumpHistoryEvent]
    count: int
