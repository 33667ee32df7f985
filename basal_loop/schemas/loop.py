"""Inputs consumed from external collaborators.

The pump driver, the CGM feed and the upstream dosing loop are outside
this package; these are the values they hand to the scheduler.
"""

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class PumpStatus(BaseModel):
    """Pump state checked before a pulse is dispatched."""

    model_config = ConfigDict(frozen=True)

    suspended: bool = False
    bolus_in_progress: bool = False
    battery_remaining: float | None = Field(
        default=None, ge=0, le=1, description="Fraction of battery charge left."
    )


class GlucoseReading(BaseModel):
    """Latest sensor glucose."""

    model_config = ConfigDict(frozen=True)

    glucose_mgdl: float = Field(gt=0)
    timestamp: AwareDatetime


class LoopSuggestion(BaseModel):
    """The upstream dosing loop's most recent suggestion."""

    model_config = ConfigDict(frozen=True)

    rate: float | None = Field(default=None, ge=0, description="Suggested U/h.")
    iob: float | None = None
    timestamp: AwareDatetime | None = None
