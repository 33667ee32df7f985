"""Pump history event model.

Durable ledger of classified pump events, one row per event ID.
"""

from datetime import datetime

from sqlalchemy import Boolean, Enum, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from basal_loop.core.enums import EventKind
from basal_loop.models.base import Base, UTCDateTime


class PumpHistoryRecord(Base):
    """Stores classified pump history events.

    The primary key is the content-derived event ID, so re-reporting the
    same pump record overwrites the existing row instead of duplicating it.
    """

    __tablename__ = "pump_history_events"

    __table_args__ = (
        # Index for retention purges and most-recent-first reads
        Index("ix_pump_history_events_timestamp", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    kind: Mapped[EventKind] = mapped_column(
        Enum(
            EventKind,
            name="pumphistoryeventkind",
            native_enum=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Insulin data
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    delivered_units: Mapped[float | None] = mapped_column(Float, nullable=True)
    rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    carb_input: Mapped[int | None] = mapped_column(Integer, nullable=True)

    automatic: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PumpHistoryRecord(id={self.id}, kind={self.kind.value}, "
            f"amount={self.amount}, rate={self.rate}, timestamp={self.timestamp})>"
        )
