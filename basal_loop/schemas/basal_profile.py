"""Basal profile schemas."""

from pydantic import BaseModel, ConfigDict, Field

MINUTES_PER_DAY = 24 * 60


class BasalProfileEntry(BaseModel):
    """One step of the programmed basal schedule."""

    model_config = ConfigDict(frozen=True)

    start_minute: int = Field(
        ge=0,
        lt=MINUTES_PER_DAY,
        description="Minute of day (local profile time) the rate starts.",
    )
    rate: float = Field(ge=0, le=35, description="Basal rate in U/h.")
