"""Tests for the IoB forecast."""

import math
from datetime import UTC, datetime, timedelta

import pytest

from basal_loop.core.enums import DoseType, EventKind, InsulinCurve
from basal_loop.core.insulin_action import parameters_for, remaining_fraction
from basal_loop.schemas.iob import DoseEntry, IobForecastPoint
from basal_loop.schemas.pump_history import PumpHistoryEvent
from basal_loop.services.iob_forecast import (
    IobForecastService,
    doses_from_events,
    forecast_at,
    forecast_for_next_hours,
    forecast_iob,
)
from fakes import T0

RAPID = parameters_for(InsulinCurve.rapid_acting)
HORIZON = timedelta(hours=6)
RESOLUTION = timedelta(minutes=5)


def bolus(at: datetime, units: float) -> DoseEntry:
    return DoseEntry(type=DoseType.bolus, start_date=at, end_date=at, value=units)


def temp_basal(at: datetime, rate: float, minutes: int) -> DoseEntry:
    return DoseEntry(
        type=DoseType.temp_basal,
        start_date=at,
        end_date=at + timedelta(minutes=minutes),
        value=rate,
    )


class TestForecastIob:
    """Tests for projecting doses forward."""

    def test_point_count_includes_both_ends(self):
        points = forecast_iob([], T0, HORIZON, RESOLUTION, RAPID)
        assert len(points) == 73
        assert points[0].timestamp == T0
        assert points[-1].timestamp == T0 + HORIZON

    def test_single_bolus_decays(self):
        points = forecast_iob([bolus(T0, 2.0)], T0, HORIZON, RESOLUTION, RAPID)

        assert points[0].iob == pytest.approx(2.0)
        assert points[12].iob == pytest.approx(2.0 * remaining_fraction(60, RAPID))
        assert all(a.iob >= b.iob for a, b in zip(points, points[1:]))

    def test_activity_in_units_per_hour(self):
        points = forecast_iob([bolus(T0, 1.0)], T0, HORIZON, RESOLUTION, RAPID)
        assert points[0].activity == 0.0
        assert max(p.activity for p in points) > 0

    def test_future_doses_not_counted_early(self):
        later = T0 + timedelta(minutes=30)
        points = forecast_iob([bolus(later, 1.0)], T0, HORIZON, RESOLUTION, RAPID)
        assert points[0].iob == 0.0
        assert points[6].iob == pytest.approx(1.0)

    def test_temp_basal_is_lump_at_start(self):
        """A 2 U/h temp basal for 30 minutes counts as 1 U at its start."""
        points = forecast_iob(
            [temp_basal(T0, 2.0, 30)], T0, HORIZON, RESOLUTION, RAPID
        )
        assert points[0].iob == pytest.approx(1.0)

    def test_non_finite_points_skipped(self):
        points = forecast_iob(
            [bolus(T0, math.inf)], T0, timedelta(hours=7), RESOLUTION, RAPID
        )

        assert points
        assert all(math.isfinite(p.iob) for p in points)
        assert points[0].minutes_from_now > RAPID.effect_duration_minutes

    def test_invalid_resolution(self):
        with pytest.raises(ValueError):
            forecast_iob([], T0, HORIZON, timedelta(0), RAPID)


class TestDosesFromEvents:
    """Tests for converting ledger events into doses."""

    def test_boluses_of_all_kinds(self):
        events = [
            PumpHistoryEvent(id="a", kind=kind, timestamp=T0, amount=0.5)
            for kind in (EventKind.bolus, EventKind.smb, EventKind.smb_basal)
        ]
        doses = doses_from_events(events)
        assert [d.type for d in doses] == [DoseType.bolus] * 3

    def test_temp_basal_truncated_by_next(self):
        second = T0 + timedelta(minutes=20)
        events = [
            PumpHistoryEvent(
                id="tb1", kind=EventKind.temp_basal_duration, timestamp=T0,
                duration_minutes=60,
            ),
            PumpHistoryEvent(
                id="_tb1", kind=EventKind.temp_basal_rate, timestamp=T0, rate=3.0
            ),
            PumpHistoryEvent(
                id="tb2", kind=EventKind.temp_basal_duration, timestamp=second,
                duration_minutes=30,
            ),
            PumpHistoryEvent(
                id="_tb2", kind=EventKind.temp_basal_rate, timestamp=second, rate=0.0
            ),
        ]

        first, last = doses_from_events(events)

        assert first.end_date == second
        assert first.net_units == pytest.approx(1.0)
        assert last.end_date == second + timedelta(minutes=30)

    def test_since_filter(self):
        events = [
            PumpHistoryEvent(
                id="old", kind=EventKind.bolus, timestamp=T0 - timedelta(hours=8),
                amount=1.0,
            ),
            PumpHistoryEvent(id="new", kind=EventKind.bolus, timestamp=T0, amount=1.0),
        ]
        doses = doses_from_events(events, since=T0 - timedelta(hours=6))
        assert len(doses) == 1


class TestForecastHelpers:
    """Tests for forecast slicing and labels."""

    def points(self) -> list[IobForecastPoint]:
        return forecast_iob([bolus(T0, 1.0)], T0, HORIZON, RESOLUTION, RAPID)

    def test_next_hours(self):
        assert len(forecast_for_next_hours(self.points(), 1)) == 13

    def test_forecast_at_nearest(self):
        assert forecast_at(self.points(), 62).minutes_from_now == 60
        assert forecast_at([], 30) is None

    def test_labels(self):
        labels = {p.minutes_from_now: p.label for p in self.points()}
        assert labels[0] == "Now"
        assert labels[15] == "+15m"
        assert labels[60] == "+1h"
        assert labels[90] == "+1h30m"


class TestIobForecastService:
    """Tests for forecasts built from the ledger."""

    async def test_forecast_from_ledger(self, ledger):
        now = datetime.now(UTC)
        await ledger.store(
            [PumpHistoryEvent(id="a", kind=EventKind.smb, timestamp=now, amount=0.5)]
        )

        forecast = await IobForecastService(ledger, RAPID).forecast(now=now)

        assert forecast.current_iob == pytest.approx(0.5)
        assert forecast.resolution_minutes == 5
        assert len(forecast.points) == 73
