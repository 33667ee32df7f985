# Database Models
from basal_loop.models.base import Base, UTCDateTime
from basal_loop.models.pump_history import PumpHistoryRecord
from basal_loop.models.smb_basal_pulse import SmbBasalPulseRecord

__all__ = [
    "Base",
    "PumpHistoryRecord",
    "SmbBasalPulseRecord",
    "UTCDateTime",
]
