"""SMB-basal pulse model.

Pulses fired by the SMB-basal scheduler, kept to a bounded count.
"""

from datetime import datetime

from sqlalchemy import Enum, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from basal_loop.core.enums import DeliveryStatus
from basal_loop.models.base import Base, UTCDateTime


class SmbBasalPulseRecord(Base):
    """Stores SMB-basal pulses.

    Rows are written when the bolus command is dispatched, before the
    pump confirms delivery (see DeliveryStatus.persisted_optimistically).
    """

    __tablename__ = "smb_basal_pulses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        index=True,
    )

    units: Mapped[float] = mapped_column(Float, nullable=False)

    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        Enum(
            DeliveryStatus,
            name="smbbasaldeliverystatus",
            native_enum=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=DeliveryStatus.persisted_optimistically,
    )

    def __repr__(self) -> str:
        return (
            f"<SmbBasalPulseRecord(id={self.id}, units={self.units}, "
            f"status={self.delivery_status.value}, timestamp={self.timestamp})>"
        )
