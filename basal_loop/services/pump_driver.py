"""Pump driver interface and command dispatch.

Commands are fired without waiting for the pump: ``dispatch_command``
returns the running task, and failures are logged from the task's
done-callback instead of being raised into the caller.
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

from basal_loop.logging_config import get_logger
from basal_loop.schemas.loop import PumpStatus

logger = get_logger(__name__)

# Keep references to in-flight commands so they are not garbage collected
_pending: set[asyncio.Task] = set()


class PumpDriver(Protocol):
    """The pump hardware seam."""

    async def enact_temp_basal(self, rate: float, duration_minutes: int) -> None:
        ...

    async def enact_bolus(
        self,
        amount: float,
        *,
        is_automatic: bool,
        is_basal_replacement: bool,
    ) -> None:
        ...

    def status(self) -> PumpStatus | None:
        ...


class PumpCommandError(Exception):
    """The pump rejected or failed a command."""

    pass


@dataclass(frozen=True)
class PumpCommand:
    """A temp basal (rate + duration) or bolus (units) command."""

    rate: float | None = None
    duration_minutes: int | None = None
    units: float | None = None
    is_automatic: bool = True
    is_basal_replacement: bool = False

    @classmethod
    def temp_basal(cls, rate: float, duration_minutes: int) -> "PumpCommand":
        return cls(rate=rate, duration_minutes=duration_minutes)

    @classmethod
    def bolus(
        cls,
        units: float,
        *,
        is_automatic: bool = True,
        is_basal_replacement: bool = False,
    ) -> "PumpCommand":
        return cls(
            units=units,
            is_automatic=is_automatic,
            is_basal_replacement=is_basal_replacement,
        )

    @property
    def is_bolus(self) -> bool:
        return self.units is not None

    def describe(self) -> dict:
        if self.is_bolus:
            return {
                "command": "bolus",
                "units": self.units,
                "basal_replacement": self.is_basal_replacement,
            }
        return {
            "command": "temp_basal",
            "rate": self.rate,
            "duration_minutes": self.duration_minutes,
        }


async def _run(driver: PumpDriver, command: PumpCommand) -> None:
    if command.is_bolus:
        await driver.enact_bolus(
            command.units,
            is_automatic=command.is_automatic,
            is_basal_replacement=command.is_basal_replacement,
        )
    else:
        await driver.enact_temp_basal(command.rate or 0.0, command.duration_minutes or 0)


def _log_outcome(command: PumpCommand, task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        logger.warning("Pump command cancelled", **command.describe())
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "Pump command failed",
            error=str(error),
            error_type=type(error).__name__,
            **command.describe(),
        )
        return
    logger.debug("Pump command completed", **command.describe())


def dispatch_command(driver: PumpDriver, command: PumpCommand) -> asyncio.Task:
    """Send a command to the pump without waiting for it to finish.

    Args:
        driver: Pump driver
        command: Command to enact

    Returns:
        The task running the command
    """
    task = asyncio.create_task(_run(driver, command))
    _pending.add(task)
    task.add_done_callback(lambda finished: _log_outcome(command, finished))
    logger.info("Pump command dispatched", **command.describe())
    return task
