"""Tests for the scheduled basal rate lookup."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from basal_loop.schemas.basal_profile import BasalProfileEntry
from basal_loop.services.basal_schedule import scheduled_basal_rate


def at_utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 1, 15, hour, minute, tzinfo=UTC)


class TestScheduledBasalRate:
    """Tests for stepwise profile lookup."""

    def test_empty_profile_is_zero(self):
        assert scheduled_basal_rate([], at_utc(8)) == 0.0

    def test_step_lookup(self):
        profile = [
            BasalProfileEntry(start_minute=0, rate=0.8),
            BasalProfileEntry(start_minute=6 * 60, rate=1.2),
            BasalProfileEntry(start_minute=22 * 60, rate=0.9),
        ]
        assert scheduled_basal_rate(profile, at_utc(3)) == 0.8
        assert scheduled_basal_rate(profile, at_utc(6)) == 1.2
        assert scheduled_basal_rate(profile, at_utc(21, 59)) == 1.2
        assert scheduled_basal_rate(profile, at_utc(23)) == 0.9

    def test_before_first_entry_uses_first_entry(self):
        profile = [
            BasalProfileEntry(start_minute=6 * 60, rate=1.0),
            BasalProfileEntry(start_minute=12 * 60, rate=2.0),
        ]
        assert scheduled_basal_rate(profile, at_utc(3)) == 1.0

    def test_unsorted_profile(self):
        profile = [
            BasalProfileEntry(start_minute=12 * 60, rate=2.0),
            BasalProfileEntry(start_minute=0, rate=1.0),
        ]
        assert scheduled_basal_rate(profile, at_utc(13)) == 2.0

    def test_profile_in_local_time(self):
        """23:30 UTC is 00:30 in Berlin in winter."""
        profile = [
            BasalProfileEntry(start_minute=0, rate=0.8),
            BasalProfileEntry(start_minute=22 * 60, rate=1.5),
        ]
        assert scheduled_basal_rate(profile, at_utc(23, 30)) == 1.5
        assert scheduled_basal_rate(profile, at_utc(23, 30), "Europe/Berlin") == 0.8
        assert (
            scheduled_basal_rate(profile, at_utc(23, 30), ZoneInfo("Europe/Berlin"))
            == 0.8
        )
