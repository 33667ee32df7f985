"""Interfaces to the rest of the closed loop.

The CGM feed, the upstream dosing loop and the basal profile are owned by
other components; the scheduler only reads from them.
"""

from collections.abc import Callable
from typing import Protocol

from basal_loop.schemas.basal_profile import BasalProfileEntry
from basal_loop.schemas.loop import GlucoseReading, LoopSuggestion

# Returns the programmed basal schedule
BasalProfileProvider = Callable[[], list[BasalProfileEntry]]


class GlucoseSource(Protocol):
    """Latest sensor glucose, if any."""

    def latest_glucose(self) -> GlucoseReading | None:
        ...


class DosingLoop(Protocol):
    """The upstream loop whose temp basals the SMB-basal mode replaces."""

    @property
    def is_looping(self) -> bool:
        """True while a loop cycle is running."""
        ...

    def latest_suggestion(self) -> LoopSuggestion | None:
        ...
