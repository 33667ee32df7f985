"""SMB-basal manager.

Replaces the pump's basal delivery with small automatic boluses. The pump
is held on a zero temp basal while insulin owed by the basal schedule
accrues in an accumulator; each time the accumulator reaches the pump's
bolus increment, one increment is delivered as a micro-bolus. Whatever is
below one increment carries over to the next tick.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from basal_loop.config import Settings, settings
from basal_loop.core.constants import (
    ACCUMULATOR_EPSILON,
    MGDL_PER_MMOL,
    STATUS_RECENT_PULSES,
)
from basal_loop.core.enums import FailureReason
from basal_loop.core.insulin_action import parameters_from_settings
from basal_loop.logging_config import correlation_scope, get_logger
from basal_loop.schemas.smb_basal import (
    FailedPulse,
    FailedPulsesInfo,
    SmbBasalIob,
    SmbBasalPulse,
    SmbBasalStatus,
)
from basal_loop.services.basal_schedule import scheduled_basal_rate
from basal_loop.services.iob_calculator import SmbBasalIobCalculator
from basal_loop.services.loop_sources import (
    BasalProfileProvider,
    DosingLoop,
    GlucoseSource,
)
from basal_loop.services.pump_driver import PumpCommand, PumpDriver, dispatch_command
from basal_loop.services.pump_history import PumpHistoryLedger
from basal_loop.services.scheduler import (
    cancel_job,
    get_scheduler,
    schedule_interval_job,
)
from basal_loop.services.smb_basal_pulses import PulseStore

logger = get_logger(__name__)

TICK_JOB_ID = "smb_basal_tick"


@dataclass
class AccumulatorState:
    """Mutable state owned by the manager and changed only under its lock."""

    accumulator_units: float = 0.0
    last_pulse_at: datetime | None = None
    last_zero_basal_check_at: datetime | None = None
    missed_units_from_low_glucose: float = 0.0

    def reset(self) -> None:
        self.accumulator_units = 0.0
        self.last_pulse_at = None


class SmbBasalManager:
    """Runs the SMB-basal control loop on a fixed tick."""

    def __init__(
        self,
        driver: PumpDriver,
        ledger: PumpHistoryLedger,
        pulse_store: PulseStore,
        basal_profile: BasalProfileProvider,
        *,
        glucose_source: GlucoseSource | None = None,
        dosing_loop: DosingLoop | None = None,
        config: Settings | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._driver = driver
        self._ledger = ledger
        self._pulses = pulse_store
        self._basal_profile = basal_profile
        self._glucose_source = glucose_source
        self._dosing_loop = dosing_loop
        self._config = config or settings
        self._scheduler = scheduler

        self.enabled = self._config.smb_basal_enabled
        self.state = AccumulatorState()
        self._failed_pulses: list[FailedPulse] = []
        self._lock = asyncio.Lock()
        self._running = False
        self._iob = SmbBasalIobCalculator(
            pulse_store, params=parameters_from_settings(self._config)
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_interval(self) -> timedelta:
        return timedelta(seconds=self._config.tick_interval_seconds)

    @property
    def min_pulse_interval(self) -> timedelta:
        return timedelta(minutes=max(1, self._config.smb_interval_minutes))

    async def start(self) -> None:
        """Schedule the tick job. Calling start while running does nothing."""
        async with self._lock:
            if self._running:
                logger.debug("SMB-basal manager already running")
                return

            scheduler = self._scheduler or get_scheduler()
            schedule_interval_job(
                scheduler,
                TICK_JOB_ID,
                self._scheduled_tick,
                interval_seconds=self._config.tick_interval_seconds,
                first_run_delay_seconds=self._config.first_tick_delay_seconds,
                name="SMB-Basal Tick",
            )
            self._scheduler = scheduler
            self._running = True

        logger.info(
            "SMB-basal manager started",
            tick_interval_seconds=self._config.tick_interval_seconds,
            pump_step=self._config.bolus_increment,
        )

    async def stop(self) -> None:
        """Cancel future ticks and reset the accumulator.

        A tick that is already running finishes first; commands it has
        dispatched are not recalled.
        """
        async with self._lock:
            if self._running and self._scheduler is not None:
                if not cancel_job(self._scheduler, TICK_JOB_ID):
                    logger.debug("SMB-basal tick job already removed")
            self._running = False
            self.state.reset()

        logger.info("SMB-basal manager stopped")

    async def settings_did_change(self, enabled: bool) -> None:
        """Apply a change of the SMB-basal enabled flag."""
        self.enabled = enabled
        if enabled:
            await self.start()
        else:
            await self.stop()

    async def _scheduled_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            logger.error("SMB-basal tick failed", error=str(e))

    async def tick(self, now: datetime | None = None) -> None:
        """Run one control cycle."""
        now = now or datetime.now(UTC)
        async with self._lock:
            with correlation_scope("tick"):
                await self._tick(now)

    async def _tick(self, now: datetime) -> None:
        if not self.enabled:
            return
        if self._dosing_loop is not None and self._dosing_loop.is_looping:
            logger.debug("Dosing loop is running, skipping tick")
            return

        self._prune_failed_pulses(now)
        await self._maintain_zero_basal(now)

        step = self._config.bolus_increment
        if step <= 0:
            return

        rate = self._effective_rate(now)
        tick_units = rate * self.tick_interval.total_seconds() / 3600

        if self._glucose_too_low():
            self.state.missed_units_from_low_glucose += max(0.0, tick_units)
            logger.info(
                "Glucose guard active, not accruing",
                missed_units=round(self.state.missed_units_from_low_glucose, 4),
            )
            return

        if rate <= 0:
            logger.debug("Basal rate is zero, pausing accrual")
            return

        self.state.accumulator_units += tick_units
        self.state.missed_units_from_low_glucose = 0.0

        last_pulse_at = self.state.last_pulse_at
        if last_pulse_at is not None and now - last_pulse_at < self.min_pulse_interval:
            return

        if self.state.accumulator_units < step - ACCUMULATOR_EPSILON:
            return

        await self._fire_pulse(step, now)

    async def _maintain_zero_basal(self, now: datetime) -> None:
        """Keep the pump on a zero temp basal while pulses replace basal."""
        last_check = self.state.last_zero_basal_check_at
        interval = timedelta(minutes=self._config.zero_basal_check_interval_minutes)
        if last_check is not None and now - last_check < interval:
            return

        temp_basal = await self._ledger.current_temp_basal()
        if (
            temp_basal is None
            or not temp_basal.is_active(now)
            or abs(temp_basal.rate) >= self._config.zero_basal_rate_tolerance
        ):
            dispatch_command(
                self._driver,
                PumpCommand.temp_basal(
                    0.0, self._config.zero_temp_basal_duration_minutes
                ),
            )
            logger.info(
                "Zero temp basal requested",
                previous_rate=temp_basal.rate if temp_basal else None,
            )

        self.state.last_zero_basal_check_at = now

    def _effective_rate(self, now: datetime) -> float:
        if self._config.use_suggested_rate_when_smb_basal:
            suggestion = (
                self._dosing_loop.latest_suggestion() if self._dosing_loop else None
            )
            if suggestion is None or suggestion.rate is None or suggestion.timestamp is None:
                return 0.0
            max_age = timedelta(minutes=self._config.suggestion_max_age_minutes)
            if now - suggestion.timestamp > max_age:
                logger.info("Loop suggestion is stale, using zero rate")
                return 0.0
            return suggestion.rate

        return scheduled_basal_rate(
            self._basal_profile(), now, self._config.profile_timezone
        )

    def _glucose_too_low(self) -> bool:
        if self._glucose_source is None:
            return False
        reading = self._glucose_source.latest_glucose()
        if reading is None:
            return True
        glucose_mmol = reading.glucose_mgdl / MGDL_PER_MMOL
        return glucose_mmol < self._config.smb_basal_glucose_threshold_mmol

    def _pre_delivery_failure(self) -> FailureReason | None:
        status = self._driver.status()
        if status is None:
            return FailureReason.pump_unavailable
        if status.suspended:
            return FailureReason.pump_suspended
        if status.bolus_in_progress:
            return FailureReason.bolus_in_progress
        if (
            status.battery_remaining is not None
            and status.battery_remaining < self._config.low_battery_threshold
        ):
            return FailureReason.low_battery
        return None

    async def _fire_pulse(self, step: float, now: datetime) -> None:
        reason = self._pre_delivery_failure()
        if reason is not None:
            # The accumulator keeps the units; they go out with a later pulse
            self._failed_pulses.append(
                FailedPulse(timestamp=now, units=step, reason=reason)
            )
            logger.warning(
                "SMB-basal pulse not delivered",
                reason=reason.value,
                accumulator_units=round(self.state.accumulator_units, 4),
            )
            return

        dispatch_command(
            self._driver,
            PumpCommand.bolus(step, is_automatic=True, is_basal_replacement=True),
        )
        self.state.accumulator_units -= step
        self.state.last_pulse_at = now
        await self._pulses.append(SmbBasalPulse(timestamp=now, units=step))

        logger.info(
            "SMB-basal pulse dispatched",
            units=step,
            accumulator_units=round(self.state.accumulator_units, 4),
        )

    def _prune_failed_pulses(self, now: datetime) -> None:
        window = timedelta(minutes=self._config.smb_basal_error_window_minutes)
        self._failed_pulses = [
            failed for failed in self._failed_pulses if now - failed.timestamp <= window
        ]

    def failed_pulses_info(self, now: datetime | None = None) -> FailedPulsesInfo:
        """Summary of failed pulses within the error window."""
        now = now or datetime.now(UTC)
        self._prune_failed_pulses(now)
        if not self._failed_pulses:
            return FailedPulsesInfo()
        oldest = min(failed.timestamp for failed in self._failed_pulses)
        return FailedPulsesInfo(
            count=len(self._failed_pulses),
            total_units=sum(failed.units for failed in self._failed_pulses),
            oldest_age_minutes=(now - oldest).total_seconds() / 60,
        )

    async def current_basal_iob(self, now: datetime | None = None) -> SmbBasalIob:
        return await self._iob.calculate_basal_iob(now)

    async def status(self, now: datetime | None = None) -> SmbBasalStatus:
        """Snapshot of the manager for monitoring."""
        now = now or datetime.now(UTC)
        iob = await self.current_basal_iob(now)
        recent = await self._pulses.recent(STATUS_RECENT_PULSES)

        return SmbBasalStatus(
            is_enabled=self.enabled,
            is_running=self.is_running,
            accumulator_units=self.state.accumulator_units,
            basal_iob=iob.iob,
            active_pulses=iob.active_pulses,
            oldest_pulse_age=iob.oldest_pulse_age,
            recent_pulses=recent,
            pump_step=self._config.bolus_increment,
            smb_interval_minutes=self._config.smb_interval_minutes,
            current_basal_rate=scheduled_basal_rate(
                self._basal_profile(), now, self._config.profile_timezone
            ),
            use_suggested_rate=self._config.use_suggested_rate_when_smb_basal,
            missed_units_from_low_glucose=self.state.missed_units_from_low_glucose,
            failed_pulses=self.failed_pulses_info(now),
            last_pulse_at=self.state.last_pulse_at,
            last_zero_basal_check_at=self.state.last_zero_basal_check_at,
        )
