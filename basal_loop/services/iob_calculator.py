"""Insulin on board calculation.

Pure functions compute IoB from snapshots of pulses and ledger events;
the calculator classes load those snapshots and apply the configured
insulin curve.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from basal_loop.config import settings
from basal_loop.core.constants import IOB_DIVERGENCE_WARNING_UNITS, MIN_ACTIVE_IOB_UNITS
from basal_loop.core.enums import EventKind
from basal_loop.core.insulin_action import (
    InsulinActionParameters,
    parameters_from_settings,
    remaining_fraction,
)
from basal_loop.logging_config import get_logger
from basal_loop.schemas.iob import TotalIobResult
from basal_loop.schemas.pump_history import PumpHistoryEvent
from basal_loop.schemas.smb_basal import SmbBasalIob, SmbBasalPulse
from basal_loop.services.loop_sources import DosingLoop
from basal_loop.services.pump_history import PumpHistoryLedger
from basal_loop.services.smb_basal_pulses import PulseStore

logger = get_logger(__name__)

# Manual and automatic boluses; SMB-basal pulses are counted separately
BOLUS_IOB_KINDS = frozenset({EventKind.bolus, EventKind.smb})


def _elapsed_minutes(since: datetime, at: datetime) -> float:
    return (at - since).total_seconds() / 60


def calculate_basal_iob(
    pulses: Iterable[SmbBasalPulse],
    at: datetime,
    params: InsulinActionParameters,
) -> SmbBasalIob:
    """Insulin on board from SMB-basal pulses.

    Args:
        pulses: Stored pulses
        at: Time to compute IoB at
        params: Insulin curve

    Returns:
        SmbBasalIob with total remaining units, the number of pulses still
        active and the age of the oldest active one in minutes
    """
    total = 0.0
    active = 0
    oldest_age = 0.0

    for pulse in pulses:
        age = _elapsed_minutes(pulse.timestamp, at)
        if age < 0 or age > params.effect_duration_minutes:
            continue
        remaining = pulse.units * remaining_fraction(age, params)
        if remaining > MIN_ACTIVE_IOB_UNITS:
            total += remaining
            active += 1
            oldest_age = max(oldest_age, age)

    return SmbBasalIob(
        iob=total,
        timestamp=at,
        active_pulses=active,
        oldest_pulse_age=oldest_age,
    )


def calculate_bolus_iob(
    events: Iterable[PumpHistoryEvent],
    at: datetime,
    params: InsulinActionParameters,
) -> float:
    """Insulin on board from manual boluses and SMBs in the ledger."""
    total = 0.0
    for event in events:
        if event.kind not in BOLUS_IOB_KINDS:
            continue
        age = _elapsed_minutes(event.timestamp, at)
        if age < 0 or age > params.effect_duration_minutes:
            continue
        remaining = (event.effective_insulin_amount or 0.0) * remaining_fraction(
            age, params
        )
        if remaining > MIN_ACTIVE_IOB_UNITS:
            total += remaining
    return total


class SmbBasalIobCalculator:
    """IoB from the stored SMB-basal pulses."""

    def __init__(
        self,
        pulse_store: PulseStore,
        params: InsulinActionParameters | None = None,
    ):
        self._pulses = pulse_store
        self._params = params

    @property
    def params(self) -> InsulinActionParameters:
        return self._params or parameters_from_settings(settings)

    async def calculate_basal_iob(self, at: datetime | None = None) -> SmbBasalIob:
        at = at or datetime.now(UTC)
        pulses = await self._pulses.all()
        return calculate_basal_iob(pulses, at, self.params)


class TotalIobCalculator:
    """Bolus IoB plus SMB-basal IoB, cross-checked against the dosing loop.

    Both parts use the same curve as the scheduler. When the upstream loop
    reports its own IoB and the two disagree by more than a unit, the
    per-dose breakdown is logged so the divergence can be investigated.
    """

    def __init__(
        self,
        ledger: PumpHistoryLedger,
        basal_calculator: SmbBasalIobCalculator,
        dosing_loop: DosingLoop | None = None,
    ):
        self._ledger = ledger
        self._basal = basal_calculator
        self._dosing_loop = dosing_loop

    async def calculate_total_iob(self, at: datetime | None = None) -> TotalIobResult:
        at = at or datetime.now(UTC)
        params = self._basal.params

        events = await self._ledger.recent()
        bolus_iob = calculate_bolus_iob(events, at, params)
        basal = await self._basal.calculate_basal_iob(at)

        system_iob = None
        if self._dosing_loop is not None:
            suggestion = self._dosing_loop.latest_suggestion()
            if suggestion is not None:
                system_iob = suggestion.iob

        result = TotalIobResult(
            total_iob=bolus_iob + basal.iob,
            bolus_iob=bolus_iob,
            basal_iob=basal.iob,
            system_iob=system_iob,
            calculated_at=at,
        )

        if (
            result.difference is not None
            and abs(result.difference) > IOB_DIVERGENCE_WARNING_UNITS
        ):
            self._log_divergence(result, events, at, params)

        return result

    def _log_divergence(
        self,
        result: TotalIobResult,
        events: list[PumpHistoryEvent],
        at: datetime,
        params: InsulinActionParameters,
    ) -> None:
        doses = [
            {
                "kind": event.kind.value,
                "minutes_ago": round(_elapsed_minutes(event.timestamp, at), 1),
                "units": event.effective_insulin_amount,
                "remaining": round(
                    (event.effective_insulin_amount or 0.0)
                    * remaining_fraction(_elapsed_minutes(event.timestamp, at), params),
                    3,
                ),
            }
            for event in events
            if event.kind in BOLUS_IOB_KINDS
            and 0 <= _elapsed_minutes(event.timestamp, at) <= params.effect_duration_minutes
        ]
        logger.warning(
            "Calculated IoB diverges from dosing loop IoB",
            total_iob=round(result.total_iob, 3),
            system_iob=result.system_iob,
            difference=round(result.difference or 0.0, 3),
            bolus_iob=round(result.bolus_iob, 3),
            basal_iob=round(result.basal_iob, 3),
            doses=doses,
        )
