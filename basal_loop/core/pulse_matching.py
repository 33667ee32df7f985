"""SMB-basal pulse matching.

The pump reports every bolus it delivers, including the micro-boluses
fired by the SMB-basal scheduler. The pump record carries no marker
saying which boluses were basal replacement, so an automatic bolus is
matched against the scheduler's own pulse records by time and amount.
This is a heuristic: a pump record outside the tolerances is classified
as an ordinary SMB.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

from basal_loop.core.constants import PULSE_AMOUNT_TOLERANCE, PULSE_MATCH_WINDOW
from basal_loop.schemas.smb_basal import SmbBasalPulse


def matches_pulse(
    timestamp: datetime,
    amount: float | None,
    pulse: SmbBasalPulse,
    time_tolerance: timedelta = PULSE_MATCH_WINDOW,
    amount_tolerance: float = PULSE_AMOUNT_TOLERANCE,
) -> bool:
    """Check whether a delivered bolus is the given pulse.

    Both bounds are strict: a bolus exactly ``time_tolerance`` away from
    the pulse does not match.

    Args:
        timestamp: When the pump delivered the bolus
        amount: Bolus amount in units (None counts as 0)
        pulse: Stored SMB-basal pulse
        time_tolerance: Maximum time distance
        amount_tolerance: Maximum amount difference in units

    Returns:
        True if the bolus is within both tolerances of the pulse
    """
    time_difference = abs(timestamp - pulse.timestamp)
    amount_difference = abs((amount or 0.0) - pulse.units)
    return time_difference < time_tolerance and amount_difference < amount_tolerance


def is_smb_basal_pulse(
    timestamp: datetime,
    amount: float | None,
    pulses: Iterable[SmbBasalPulse],
    time_tolerance: timedelta = PULSE_MATCH_WINDOW,
    amount_tolerance: float = PULSE_AMOUNT_TOLERANCE,
) -> bool:
    """Check whether a delivered bolus matches any stored pulse."""
    return any(
        matches_pulse(timestamp, amount, pulse, time_tolerance, amount_tolerance)
        for pulse in pulses
    )
