"""Scheduled basal rate lookup."""

from collections.abc import Sequence
from datetime import datetime
from zoneinfo import ZoneInfo

from basal_loop.schemas.basal_profile import BasalProfileEntry


def scheduled_basal_rate(
    profile: Sequence[BasalProfileEntry],
    at: datetime,
    tz: ZoneInfo | str = "UTC",
) -> float:
    """Basal rate (U/h) programmed for the given time.

    The profile is a daily step schedule in the profile's local time. The
    latest entry starting at or before the local minute of day applies;
    before the first entry's start the first entry is used. An empty
    profile has no basal.
    """
    if not profile:
        return 0.0

    zone = ZoneInfo(tz) if isinstance(tz, str) else tz
    local = at.astimezone(zone)
    minute_of_day = local.hour * 60 + local.minute

    entries = sorted(profile, key=lambda entry: entry.start_minute)
    rate = entries[0].rate
    for entry in entries:
        if entry.start_minute > minute_of_day:
            break
        rate = entry.rate
    return rate
