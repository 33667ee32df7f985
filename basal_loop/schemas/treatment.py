"""External treatment record schemas.

Treatment records are what the ledger can reconstruct for upload to an
external treatment log. Records are hashable so an "already recorded"
set can be subtracted.
"""

from pydantic import AwareDatetime, BaseModel, ConfigDict

from basal_loop.core.enums import TreatmentType

ENTERED_BY = "basal-loop"


class TreatmentRecord(BaseModel):
    """A treatment derived from the pump history."""

    model_config = ConfigDict(frozen=True)

    event_type: TreatmentType
    created_at: AwareDatetime
    entered_by: str = ENTERED_BY
    duration: int | None = None
    rate: float | None = None
    absolute: float | None = None
    insulin: float | None = None
    carbs: float | None = None
    automatic: bool | None = None
    source_event_id: str | None = None


class TreatmentListResponse(BaseModel):
    """Response schema for unsynced treatment records."""

    treatments: list[TreatmentRecord]
    count: int
