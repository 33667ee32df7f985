"""Service wiring and FastAPI dependencies."""

from dataclasses import dataclass
from datetime import timedelta

from fastapi import HTTPException, Request, status

from basal_loop.config import Settings, settings
from basal_loop.core.insulin_action import parameters_from_settings
from basal_loop.services.iob_calculator import SmbBasalIobCalculator, TotalIobCalculator
from basal_loop.services.iob_forecast import IobForecastService
from basal_loop.services.loop_sources import (
    BasalProfileProvider,
    DosingLoop,
    GlucoseSource,
)
from basal_loop.services.pump_driver import PumpDriver
from basal_loop.services.pump_history import PumpHistoryLedger
from basal_loop.services.smb_basal_manager import SmbBasalManager
from basal_loop.services.smb_basal_pulses import PulseStore


@dataclass
class SmbBasalComponents:
    """The long-lived services behind the API."""

    pulse_store: PulseStore
    ledger: PumpHistoryLedger
    manager: SmbBasalManager
    basal_iob: SmbBasalIobCalculator
    total_iob: TotalIobCalculator
    forecast: IobForecastService


def build_components(
    driver: PumpDriver,
    basal_profile: BasalProfileProvider,
    *,
    glucose_source: GlucoseSource | None = None,
    dosing_loop: DosingLoop | None = None,
    config: Settings | None = None,
) -> SmbBasalComponents:
    """Wire the ledger, calculators and manager around one pump driver."""
    config = config or settings
    params = parameters_from_settings(config)

    pulse_store = PulseStore(max_pulses=config.max_stored_pulses)
    manager: SmbBasalManager | None = None

    def smb_basal_enabled() -> bool:
        return manager.enabled if manager is not None else config.smb_basal_enabled

    ledger = PumpHistoryLedger(
        pulse_store,
        retention=timedelta(hours=config.pump_history_retention_hours),
        smb_basal_enabled=smb_basal_enabled,
    )
    manager = SmbBasalManager(
        driver,
        ledger,
        pulse_store,
        basal_profile,
        glucose_source=glucose_source,
        dosing_loop=dosing_loop,
        config=config,
    )
    basal_iob = SmbBasalIobCalculator(pulse_store, params=params)

    return SmbBasalComponents(
        pulse_store=pulse_store,
        ledger=ledger,
        manager=manager,
        basal_iob=basal_iob,
        total_iob=TotalIobCalculator(ledger, basal_iob, dosing_loop=dosing_loop),
        forecast=IobForecastService(ledger, params=params),
    )


def get_components(request: Request) -> SmbBasalComponents:
    """FastAPI dependency returning the wired services."""
    components = getattr(request.app.state, "smb_basal", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No pump driver is configured",
        )
    return components
