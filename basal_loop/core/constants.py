"""Clinical and control-loop constants.

These are defaults and fixed tolerances. Anything a user can tune
(pump step, pulse interval, curve) lives in ``basal_loop.config``.
"""

from datetime import timedelta
from typing import Final

# Pulse matching: a pump-reported automatic bolus within this window of a
# stored pulse, with the same amount, is the pulse itself.
PULSE_MATCH_WINDOW: Final[timedelta] = timedelta(seconds=30)
PULSE_AMOUNT_TOLERANCE: Final[float] = 0.001

# Unsynced-record dedupe uses the same window for near-duplicate boluses.
DUPLICATE_BOLUS_WINDOW: Final[timedelta] = timedelta(seconds=30)

# Remaining insulin below this (units) is not counted as active.
MIN_ACTIVE_IOB_UNITS: Final[float] = 0.001

# Total IoB cross-check: differences above this (units) are logged.
IOB_DIVERGENCE_WARNING_UNITS: Final[float] = 1.0

# Forecast defaults
FORECAST_HORIZON: Final[timedelta] = timedelta(hours=6)
FORECAST_RESOLUTION: Final[timedelta] = timedelta(minutes=5)

# Glucose readings are stored in mg/dL; thresholds are configured in mmol/L.
MGDL_PER_MMOL: Final[float] = 18.0

# Tolerance for float accumulation when comparing against the pump step.
ACCUMULATOR_EPSILON: Final[float] = 1e-9

# Number of pulses shown in the monitor status.
STATUS_RECENT_PULSES: Final[int] = 10
