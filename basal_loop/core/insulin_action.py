"""Insulin action model.

Exponential (biexponential) insulin decay curve as used by Loop and
OpenAPS. Every IoB consumer in this package (pulse IoB, total IoB,
forecast) goes through ``remaining_fraction`` so decay behaves the
same everywhere.

All durations are in minutes.
"""

import math
from typing import TYPE_CHECKING, Final, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from basal_loop.core.enums import InsulinCurve
from basal_loop.logging_config import get_logger

if TYPE_CHECKING:
    from basal_loop.config import Settings

logger = get_logger(__name__)


class InsulinActionParameters(BaseModel):
    """Parameters of one exponential insulin curve."""

    model_config = ConfigDict(frozen=True)

    action_duration_minutes: float = Field(gt=0, le=720)
    peak_activity_minutes: float = Field(gt=0)
    delay_minutes: float = Field(default=0.0, ge=0, le=60)

    @model_validator(mode="after")
    def check_peak(self) -> Self:
        """The curve is only defined for a peak before half the duration."""
        if self.peak_activity_minutes >= self.action_duration_minutes / 2:
            msg = (
                "peak_activity_minutes must be less than half of "
                "action_duration_minutes"
            )
            raise ValueError(msg)
        return self

    @property
    def effect_duration_minutes(self) -> float:
        """Time from delivery until the dose is fully absorbed."""
        return self.delay_minutes + self.action_duration_minutes


# Preset curves: (action duration, default peak, delay), minutes
CURVE_PRESETS: Final[dict[InsulinCurve, tuple[float, float, float]]] = {
    InsulinCurve.rapid_acting: (360.0, 75.0, 10.0),
    InsulinCurve.ultra_rapid: (300.0, 55.0, 10.0),
    # Bilinear is approximated with the rapid-acting exponential curve
    InsulinCurve.bilinear: (360.0, 75.0, 10.0),
}

# Curves whose peak may be overridden by the user
CUSTOM_PEAK_CURVES: Final[frozenset[InsulinCurve]] = frozenset(
    {InsulinCurve.rapid_acting, InsulinCurve.ultra_rapid}
)


def parameters_for(
    curve: InsulinCurve,
    use_custom_peak_time: bool = False,
    custom_peak_minutes: float | None = None,
) -> InsulinActionParameters:
    """Build curve parameters for a preset, honoring a custom peak.

    A custom peak at or beyond half the action duration has no defined
    curve; it is ignored with a warning and the preset peak is used.

    Args:
        curve: Named curve preset
        use_custom_peak_time: Whether the user overrides the peak
        custom_peak_minutes: The overriding peak time

    Returns:
        InsulinActionParameters for the curve
    """
    duration, peak, delay = CURVE_PRESETS[curve]
    if (
        use_custom_peak_time
        and custom_peak_minutes is not None
        and curve in CUSTOM_PEAK_CURVES
    ):
        if custom_peak_minutes < duration / 2:
            peak = custom_peak_minutes
        else:
            logger.warning(
                "Custom insulin peak ignored",
                curve=curve.value,
                custom_peak_minutes=custom_peak_minutes,
                preset_peak_minutes=peak,
                max_peak_minutes=duration / 2,
            )
    return InsulinActionParameters(
        action_duration_minutes=duration,
        peak_activity_minutes=peak,
        delay_minutes=delay,
    )


def parameters_from_settings(settings: "Settings") -> InsulinActionParameters:
    """Curve parameters for the configured insulin.

    The scheduler, the IoB calculators and the forecast all call this so
    they agree on a single curve.
    """
    return parameters_for(
        settings.insulin_curve,
        use_custom_peak_time=settings.use_custom_peak_time,
        custom_peak_minutes=settings.insulin_peak_time_minutes,
    )


def _curve_constants(params: InsulinActionParameters) -> tuple[float, float, float]:
    """Return (tau, a, S) for the curve."""
    peak = params.peak_activity_minutes
    duration = params.action_duration_minutes
    tau = peak * (1 - peak / duration) / (1 - 2 * peak / duration)
    a = 2 * tau / duration
    s = 1 / (1 - a + (1 + a) * math.exp(-duration / tau))
    return tau, a, s


def remaining_fraction(
    elapsed_minutes: float, params: InsulinActionParameters
) -> float:
    """Fraction of a dose still active after elapsed time.

    Args:
        elapsed_minutes: Minutes since the dose was delivered
        params: Curve parameters

    Returns:
        Fraction of insulin remaining (0.0 to 1.0); 1.0 until the delay
        has passed, 0.0 once the curve has completed
    """
    t = elapsed_minutes - params.delay_minutes
    if t <= 0:
        return 1.0
    duration = params.action_duration_minutes
    if t >= duration:
        return 0.0

    tau, a, s = _curve_constants(params)
    remaining = 1 - s * (1 - a) * (
        (t * t / (tau * duration * (1 - a)) - t / tau - 1) * math.exp(-t / tau) + 1
    )
    return max(0.0, min(1.0, remaining))


def activity(elapsed_minutes: float, params: InsulinActionParameters) -> float:
    """Fraction of a dose absorbed per minute at the elapsed time.

    Args:
        elapsed_minutes: Minutes since the dose was delivered
        params: Curve parameters

    Returns:
        Instantaneous activity (fraction of dose per minute), 0.0 outside
        the curve
    """
    t = elapsed_minutes - params.delay_minutes
    duration = params.action_duration_minutes
    if t <= 0 or t >= duration:
        return 0.0
    tau, _, s = _curve_constants(params)
    return max(0.0, s / (tau * tau) * t * (1 - t / duration) * math.exp(-t / tau))
