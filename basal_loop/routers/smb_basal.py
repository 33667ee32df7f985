"""SMB-basal monitoring and control endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from basal_loop.dependencies import SmbBasalComponents, get_components
from basal_loop.logging_config import get_logger
from basal_loop.schemas.iob import IobForecastResponse, TotalIobResult
from basal_loop.schemas.pump_history import PumpHistoryResponse
from basal_loop.schemas.smb_basal import (
    SmbBasalEnabledRequest,
    SmbBasalIob,
    SmbBasalStatus,
)
from basal_loop.schemas.treatment import TreatmentListResponse
from basal_loop.services.iob_forecast import forecast_for_next_hours

logger = get_logger(__name__)

router = APIRouter(prefix="/api/smb-basal", tags=["smb-basal"])

Components = Annotated[SmbBasalComponents, Depends(get_components)]


@router.get("/status", response_model=SmbBasalStatus)
async def get_status(components: Components) -> SmbBasalStatus:
    """Current accumulator, basal IoB, recent pulses and failures."""
    return await components.manager.status()


@router.put("/enabled", response_model=SmbBasalStatus)
async def set_enabled(
    request: SmbBasalEnabledRequest,
    components: Components,
) -> SmbBasalStatus:
    """Enable or disable SMB-basal delivery.

    Enabling starts the tick job; disabling stops it and clears the
    accumulator.
    """
    logger.info("SMB-basal enabled flag changed", enabled=request.enabled)
    await components.manager.settings_did_change(request.enabled)
    return await components.manager.status()


@router.get("/iob", response_model=SmbBasalIob)
async def get_basal_iob(components: Components) -> SmbBasalIob:
    return await components.basal_iob.calculate_basal_iob()


@router.get("/iob/total", response_model=TotalIobResult)
async def get_total_iob(components: Components) -> TotalIobResult:
    return await components.total_iob.calculate_total_iob()


@router.get("/iob/forecast", response_model=IobForecastResponse)
async def get_iob_forecast(
    components: Components,
    hours: float = Query(default=6.0, gt=0, le=6, description="Forecast span in hours"),
) -> IobForecastResponse:
    """IoB projected forward at 5-minute resolution."""
    forecast = await components.forecast.forecast()
    return forecast.model_copy(
        update={"points": forecast_for_next_hours(forecast.points, hours)}
    )


@router.get("/pump-history", response_model=PumpHistoryResponse)
async def get_pump_history(components: Components) -> PumpHistoryResponse:
    """Stored pump events, most recent first."""
    events = await components.ledger.recent()
    return PumpHistoryResponse(events=events, count=len(events))


@router.get("/treatments/unsynced", response_model=TreatmentListResponse)
async def get_unsynced_treatments(components: Components) -> TreatmentListResponse:
    """Treatment records reconstructed from the pump history."""
    treatments = await components.ledger.build_unsynced_records()
    return TreatmentListResponse(treatments=treatments, count=len(treatments))
