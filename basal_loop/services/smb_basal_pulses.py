"""SMB-basal pulse store.

Bounded, append-only record of the pulses the scheduler has dispatched.
Reads fail open: a storage error is logged and reported as an empty
pulse list, so IoB degrades to zero instead of stopping the scheduler.
"""

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from basal_loop.config import settings
from basal_loop.database import get_session_maker
from basal_loop.logging_config import get_logger
from basal_loop.models.smb_basal_pulse import SmbBasalPulseRecord
from basal_loop.schemas.smb_basal import SmbBasalPulse

logger = get_logger(__name__)


class PulseStore:
    """Persisted SMB-basal pulses, capped to the newest ``max_pulses``."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        max_pulses: int | None = None,
    ):
        self._session_maker = session_maker
        self.max_pulses = max_pulses or settings.max_stored_pulses

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker or get_session_maker()

    async def all(self) -> list[SmbBasalPulse]:
        """Return all stored pulses, oldest first."""
        try:
            async with self._sessions()() as db:
                result = await db.execute(
                    select(SmbBasalPulseRecord).order_by(SmbBasalPulseRecord.timestamp)
                )
                records = result.scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to load SMB-basal pulses")
            return []
        return [SmbBasalPulse.model_validate(record) for record in records]

    async def recent(self, limit: int) -> list[SmbBasalPulse]:
        """Return the newest ``limit`` pulses, most recent first."""
        try:
            async with self._sessions()() as db:
                result = await db.execute(
                    select(SmbBasalPulseRecord)
                    .order_by(desc(SmbBasalPulseRecord.timestamp))
                    .limit(limit)
                )
                records = result.scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to load recent SMB-basal pulses")
            return []
        return [SmbBasalPulse.model_validate(record) for record in records]

    async def append(self, pulse: SmbBasalPulse) -> bool:
        """Persist a pulse and trim the store to its cap.

        Returns:
            True if the pulse was written
        """
        try:
            async with self._sessions()() as db, db.begin():
                db.add(
                    SmbBasalPulseRecord(
                        id=pulse.id,
                        timestamp=pulse.timestamp,
                        units=pulse.units,
                        delivery_status=pulse.delivery_status,
                    )
                )
                await db.flush()

                newest = (
                    select(SmbBasalPulseRecord.id)
                    .order_by(desc(SmbBasalPulseRecord.timestamp))
                    .limit(self.max_pulses)
                )
                await db.execute(
                    delete(SmbBasalPulseRecord).where(
                        SmbBasalPulseRecord.id.not_in(newest)
                    )
                )
        except SQLAlchemyError:
            logger.exception(
                "Failed to persist SMB-basal pulse",
                pulse_id=pulse.id,
                units=pulse.units,
            )
            return False

        logger.debug("SMB-basal pulse persisted", pulse_id=pulse.id, units=pulse.units)
        return True
