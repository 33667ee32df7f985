"""SMB-basal schemas.

Pulses fired by the scheduler, the IoB derived from them, failed pulse
records, and the monitor status returned by the API.
"""

import uuid
from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from basal_loop.core.enums import DeliveryStatus, FailureReason


class SmbBasalPulse(BaseModel):
    """A basal-replacement micro-bolus fired by the scheduler."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: AwareDatetime
    units: float = Field(gt=0)
    delivery_status: DeliveryStatus = DeliveryStatus.persisted_optimistically


class SmbBasalIob(BaseModel):
    """Insulin on board from SMB-basal pulses at a point in time."""

    model_config = ConfigDict(frozen=True)

    iob: float
    timestamp: datetime
    active_pulses: int = Field(ge=0)
    oldest_pulse_age: float = Field(ge=0, description="Minutes.")


class FailedPulse(BaseModel):
    """A pulse that was due but could not be dispatched to the pump."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: AwareDatetime
    units: float = Field(gt=0)
    reason: FailureReason


class FailedPulsesInfo(BaseModel):
    """Summary of recent failed pulses."""

    count: int = 0
    total_units: float = 0.0
    oldest_age_minutes: float = 0.0


class SmbBasalStatus(BaseModel):
    """Snapshot of the SMB-basal controller for monitoring."""

    is_enabled: bool
    is_running: bool
    accumulator_units: float
    basal_iob: float
    active_pulses: int
    oldest_pulse_age: float
    recent_pulses: list[SmbBasalPulse]
    pump_step: float
    smb_interval_minutes: int
    current_basal_rate: float
    use_suggested_rate: bool
    missed_units_from_low_glucose: float
    failed_pulses: FailedPulsesInfo
    last_pulse_at: datetime | None = None
    last_zero_basal_check_at: datetime | None = None


class SmbBasalEnabledRequest(BaseModel):
    """Request schema for toggling the SMB-basal controller."""

    enabled: bool
