"""Stand-ins for the pump, CGM and dosing loop used across tests."""

from datetime import UTC, datetime

from basal_loop.schemas.loop import GlucoseReading, LoopSuggestion, PumpStatus

# Fixed reference time for tests that drive the clock explicitly
T0 = datetime(2026, 1, 15, 8, 0, tzinfo=UTC)


class FakePumpDriver:
    """Records the commands it receives."""

    def __init__(self, pump_status: PumpStatus | None = None):
        self.pump_status = pump_status if pump_status is not None else PumpStatus()
        self.temp_basals: list[tuple[float, int]] = []
        self.boluses: list[tuple[float, bool, bool]] = []

    async def enact_temp_basal(self, rate: float, duration_minutes: int) -> None:
        self.temp_basals.append((rate, duration_minutes))

    async def enact_bolus(
        self,
        amount: float,
        *,
        is_automatic: bool,
        is_basal_replacement: bool,
    ) -> None:
        self.boluses.append((amount, is_automatic, is_basal_replacement))

    def status(self) -> PumpStatus | None:
        return self.pump_status


class FakeGlucoseSource:
    def __init__(self, reading: GlucoseReading | None = None):
        self.reading = reading

    def latest_glucose(self) -> GlucoseReading | None:
        return self.reading


class FakeDosingLoop:
    def __init__(
        self, suggestion: LoopSuggestion | None = None, is_looping: bool = False
    ):
        self.suggestion = suggestion
        self.is_looping = is_looping

    def latest_suggestion(self) -> LoopSuggestion | None:
        return self.suggestion
