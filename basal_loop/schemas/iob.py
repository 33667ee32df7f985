"""IoB calculation and forecast schemas."""

from datetime import datetime, timedelta

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, computed_field

from basal_loop.core.enums import DoseType


class DoseEntry(BaseModel):
    """A dose contributing to the IoB forecast.

    ``value`` is units for a bolus and U/h for a temp basal.
    """

    model_config = ConfigDict(frozen=True)

    type: DoseType
    start_date: AwareDatetime
    end_date: AwareDatetime
    value: float = Field(ge=0)

    @property
    def net_units(self) -> float:
        """Units the dose delivers over its whole interval."""
        if self.type == DoseType.bolus:
            return self.value
        hours = (self.end_date - self.start_date).total_seconds() / 3600
        return self.value * max(0.0, hours)


class IobForecastPoint(BaseModel):
    """Projected IoB at one forecast step."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    iob: float
    activity: float = Field(description="Insulin activity in U/h.")
    minutes_from_now: int

    @computed_field
    @property
    def label(self) -> str:
        if self.minutes_from_now == 0:
            return "Now"
        if self.minutes_from_now < 60:
            return f"+{self.minutes_from_now}m"
        hours, minutes = divmod(self.minutes_from_now, 60)
        return f"+{hours}h{minutes}m" if minutes else f"+{hours}h"


class IobForecastResponse(BaseModel):
    """Response schema for the IoB forecast."""

    points: list[IobForecastPoint]
    current_iob: float
    resolution_minutes: int
    horizon: timedelta


class TotalIobResult(BaseModel):
    """Bolus + SMB-basal IoB, cross-checked against the dosing loop's IoB."""

    model_config = ConfigDict(frozen=True)

    total_iob: float
    bolus_iob: float
    basal_iob: float
    system_iob: float | None = None
    calculated_at: datetime

    @computed_field
    @property
    def difference(self) -> float | None:
        if self.system_iob is None:
            return None
        return self.total_iob - self.system_iob
