"""Enumerations shared by the SMB-basal core.

Event kinds form a closed set: every consumer matches on them
exhaustively with ``match`` and ``assert_never``.
"""

from enum import StrEnum, auto


class InsulinCurve(StrEnum):
    """Named insulin action curve presets."""

    rapid_acting = auto()
    ultra_rapid = auto()
    bilinear = auto()


class EventKind(StrEnum):
    """Kinds of events held in the pump history ledger."""

    bolus = auto()
    smb = auto()
    smb_basal = auto()
    temp_basal_rate = auto()
    temp_basal_duration = auto()
    suspend = auto()
    resume = auto()
    rewind = auto()
    prime = auto()
    journal_carbs = auto()


class RawEventType(StrEnum):
    """Event types reported by the pump driver.

    Only a subset is stored; the rest (alarms, reservoir changes, ...)
    are dropped during classification.
    """

    bolus = auto()
    temp_basal = auto()
    suspend = auto()
    resume = auto()
    rewind = auto()
    prime = auto()
    alarm = auto()
    alarm_clear = auto()
    basal = auto()
    replace_component = auto()
    other = auto()


class DeliveryStatus(StrEnum):
    """Delivery state of a stored SMB-basal pulse.

    ``persisted_optimistically``: the pulse was recorded when the bolus
    command was dispatched, without waiting for pump confirmation. The
    record can diverge from what the pump delivered until the pump
    history is re-synced.
    """

    persisted_optimistically = auto()


class FailureReason(StrEnum):
    """Why a pulse could not be dispatched."""

    pump_unavailable = auto()
    pump_suspended = auto()
    bolus_in_progress = auto()
    low_battery = auto()
    command_rejected = auto()


class TreatmentType(StrEnum):
    """External treatment record types built from the ledger."""

    temp_basal = auto()
    bolus = auto()
    smb = auto()
    smb_basal = auto()
    carb_correction = auto()


class DoseType(StrEnum):
    """Dose shapes understood by the IoB forecast."""

    bolus = auto()
    temp_basal = auto()
