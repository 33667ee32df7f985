"""IoB forecast.

Projects insulin on board forward from the doses in the pump history
ledger, one point per resolution step.

Temp basals are treated as a single lump of ``rate * duration`` units
anchored at the temp basal's start. This overstates early IoB for long
temp basals but matches how the pump reports them; a temp basal ends no
later than the start of the next one.
"""

import math
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from basal_loop.config import settings
from basal_loop.core.constants import FORECAST_HORIZON, FORECAST_RESOLUTION
from basal_loop.core.enums import DoseType, EventKind
from basal_loop.core.insulin_action import (
    InsulinActionParameters,
    activity,
    parameters_from_settings,
    remaining_fraction,
)
from basal_loop.logging_config import get_logger
from basal_loop.schemas.iob import DoseEntry, IobForecastPoint, IobForecastResponse
from basal_loop.schemas.pump_history import PumpHistoryEvent, rate_event_id
from basal_loop.services.pump_history import PumpHistoryLedger

logger = get_logger(__name__)

FORECAST_BOLUS_KINDS = frozenset({EventKind.bolus, EventKind.smb, EventKind.smb_basal})


def forecast_iob(
    doses: Iterable[DoseEntry],
    start: datetime,
    horizon: timedelta,
    resolution: timedelta,
    params: InsulinActionParameters,
) -> list[IobForecastPoint]:
    """Project IoB and insulin activity from ``start`` over ``horizon``.

    Args:
        doses: Doses to project
        start: First forecast point
        horizon: Span of the forecast
        resolution: Spacing between points
        params: Insulin curve

    Returns:
        Points at start + i * resolution for i = 0..horizon/resolution,
        skipping any point whose values are not finite
    """
    if resolution <= timedelta(0):
        raise ValueError("resolution must be positive")

    dose_list = list(doses)
    steps = int(horizon / resolution)
    points: list[IobForecastPoint] = []

    for i in range(steps + 1):
        offset = resolution * i
        step = start + offset
        iob = 0.0
        units_per_minute = 0.0

        for dose in dose_list:
            elapsed = (step - dose.start_date).total_seconds() / 60
            if elapsed < 0 or elapsed > params.effect_duration_minutes:
                continue
            units = dose.net_units
            iob += units * remaining_fraction(elapsed, params)
            units_per_minute += units * activity(elapsed, params)

        activity_per_hour = units_per_minute * 60
        if not (math.isfinite(iob) and math.isfinite(activity_per_hour)):
            logger.warning("Skipping non-finite forecast point", timestamp=step.isoformat())
            continue

        points.append(
            IobForecastPoint(
                timestamp=step,
                iob=iob,
                activity=activity_per_hour,
                minutes_from_now=int(offset.total_seconds() // 60),
            )
        )

    return points


def doses_from_events(
    events: Iterable[PumpHistoryEvent], since: datetime | None = None
) -> list[DoseEntry]:
    """Convert ledger events into forecast doses.

    Args:
        events: Ledger events in any order
        since: Ignore doses that started before this time

    Returns:
        Bolus and temp basal doses, oldest first
    """
    event_list = list(events)
    by_id = {event.id: event for event in event_list}

    boluses: list[DoseEntry] = []
    temp_basals: list[tuple[datetime, int, float]] = []

    for event in event_list:
        if event.kind in FORECAST_BOLUS_KINDS:
            amount = event.effective_insulin_amount
            if not amount:
                continue
            boluses.append(
                DoseEntry(
                    type=DoseType.bolus,
                    start_date=event.timestamp,
                    end_date=event.timestamp,
                    value=amount,
                )
            )
        elif event.kind == EventKind.temp_basal_duration:
            rate = by_id.get(rate_event_id(event.id))
            if rate is None or rate.timestamp != event.timestamp:
                continue
            temp_basals.append(
                (event.timestamp, event.duration_minutes or 0, rate.rate or 0.0)
            )

    temp_basals.sort(key=lambda entry: entry[0])
    doses = list(boluses)
    for index, (started_at, duration, rate) in enumerate(temp_basals):
        end = started_at + timedelta(minutes=duration)
        if index + 1 < len(temp_basals):
            end = min(end, temp_basals[index + 1][0])
        doses.append(
            DoseEntry(
                type=DoseType.temp_basal,
                start_date=started_at,
                end_date=end,
                value=rate,
            )
        )

    if since is not None:
        doses = [dose for dose in doses if dose.start_date >= since]
    doses.sort(key=lambda dose: dose.start_date)
    return doses


def forecast_for_next_hours(
    points: list[IobForecastPoint], hours: float
) -> list[IobForecastPoint]:
    """Points within the next ``hours``."""
    limit = hours * 60
    return [point for point in points if point.minutes_from_now <= limit]


def forecast_at(
    points: list[IobForecastPoint], minutes_from_now: int
) -> IobForecastPoint | None:
    """The point nearest to ``minutes_from_now``."""
    if not points:
        return None
    return min(points, key=lambda point: abs(point.minutes_from_now - minutes_from_now))


class IobForecastService:
    """Builds IoB forecasts from the pump history ledger."""

    def __init__(
        self,
        ledger: PumpHistoryLedger,
        params: InsulinActionParameters | None = None,
    ):
        self._ledger = ledger
        self._params = params

    async def forecast(
        self,
        now: datetime | None = None,
        horizon: timedelta = FORECAST_HORIZON,
        resolution: timedelta = FORECAST_RESOLUTION,
    ) -> IobForecastResponse:
        now = now or datetime.now(UTC)
        params = self._params or parameters_from_settings(settings)

        events = await self._ledger.recent()
        since = now - timedelta(minutes=params.effect_duration_minutes)
        doses = doses_from_events(events, since=since)
        points = forecast_iob(doses, now, horizon, resolution, params)

        logger.debug(
            "IoB forecast built",
            dose_count=len(doses),
            point_count=len(points),
        )

        return IobForecastResponse(
            points=points,
            current_iob=points[0].iob if points else 0.0,
            resolution_minutes=int(resolution.total_seconds() // 60),
            horizon=horizon,
        )
