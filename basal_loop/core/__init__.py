"""Pure SMB-basal domain logic.

No database or scheduler dependencies live here:

- ``insulin_action``: exponential insulin decay curve and presets
- ``pulse_matching``: classification of pump boluses as SMB-basal pulses
- ``constants`` / ``enums``: shared tolerances and closed enumerations
"""

from basal_loop.core.insulin_action import (
    InsulinActionParameters,
    activity,
    parameters_for,
    parameters_from_settings,
    remaining_fraction,
)

__all__ = [
    "InsulinActionParameters",
    "activity",
    "parameters_for",
    "parameters_from_settings",
    "remaining_fraction",
]
