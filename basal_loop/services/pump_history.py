"""Pump history ledger.

Classifies raw pump records into PumpHistoryEvent entries, keeps a
rolling window of them in the database, and notifies observers after
every successful write. The ledger is also the source for reconstructing
treatment records that have not been uploaded yet.
"""

import asyncio
import uuid
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol, assert_never

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from basal_loop.config import settings
from basal_loop.core.constants import DUPLICATE_BOLUS_WINDOW, PULSE_AMOUNT_TOLERANCE
from basal_loop.core.enums import EventKind, RawEventType, TreatmentType
from basal_loop.core.pulse_matching import is_smb_basal_pulse
from basal_loop.database import get_session_maker
from basal_loop.logging_config import get_logger
from basal_loop.models.pump_history import PumpHistoryRecord
from basal_loop.schemas.pump_history import (
    PumpHistoryEvent,
    RawPumpEvent,
    TempBasalState,
    rate_event_id,
)
from basal_loop.schemas.smb_basal import SmbBasalPulse
from basal_loop.schemas.treatment import TreatmentRecord
from basal_loop.services.smb_basal_pulses import PulseStore

logger = get_logger(__name__)

# Classification rank used when near-duplicate boluses are collapsed
_BOLUS_RANK: dict[EventKind, int] = {
    EventKind.smb_basal: 2,
    EventKind.smb: 1,
    EventKind.bolus: 0,
}

_BOLUS_TREATMENT: dict[EventKind, TreatmentType] = {
    EventKind.bolus: TreatmentType.bolus,
    EventKind.smb: TreatmentType.smb,
    EventKind.smb_basal: TreatmentType.smb_basal,
}


class PumpHistoryObserver(Protocol):
    """Receives the full ledger after each successful write."""

    async def pump_history_did_update(self, events: list[PumpHistoryEvent]) -> None:
        ...


def _duration_minutes(raw: RawPumpEvent) -> int | None:
    if raw.dose is None:
        return None
    return int(raw.dose.duration.total_seconds() // 60)


def classify_raw_event(
    raw: RawPumpEvent,
    pulses: Sequence[SmbBasalPulse],
    smb_basal_enabled: bool,
) -> list[PumpHistoryEvent]:
    """Turn one pump record into zero, one or two ledger events.

    Args:
        raw: Record reported by the pump driver
        pulses: Stored SMB-basal pulses to match automatic boluses against
        smb_basal_enabled: Whether automatic boluses may be basal replacement

    Returns:
        The ledger events for the record (empty if it is not tracked)
    """
    event_id = raw.event_id
    dose = raw.dose

    match raw.type:
        case RawEventType.bolus:
            if dose is None:
                return []
            if dose.automatic:
                is_pulse = smb_basal_enabled and is_smb_basal_pulse(
                    raw.date, dose.units, pulses
                )
                kind = EventKind.smb_basal if is_pulse else EventKind.smb
            else:
                kind = EventKind.bolus
            return [
                PumpHistoryEvent(
                    id=event_id,
                    kind=kind,
                    timestamp=raw.date,
                    amount=dose.units,
                    delivered_units=dose.delivered_units,
                    duration_minutes=_duration_minutes(raw),
                    automatic=bool(dose.automatic),
                )
            ]

        case RawEventType.temp_basal:
            if dose is None:
                return []
            # A finalized record with delivered units marks the end of a temp basal
            if not dose.is_mutable and dose.delivered_units is not None:
                return []
            duration = _duration_minutes(raw)
            return [
                PumpHistoryEvent(
                    id=event_id,
                    kind=EventKind.temp_basal_duration,
                    timestamp=raw.date,
                    duration_minutes=duration,
                    automatic=dose.automatic,
                ),
                PumpHistoryEvent(
                    id=rate_event_id(event_id),
                    kind=EventKind.temp_basal_rate,
                    timestamp=raw.date,
                    rate=dose.units_per_hour,
                    duration_minutes=duration,
                    automatic=dose.automatic,
                ),
            ]

        case RawEventType.suspend:
            return [
                PumpHistoryEvent(id=event_id, kind=EventKind.suspend, timestamp=raw.date)
            ]
        case RawEventType.resume:
            return [
                PumpHistoryEvent(id=event_id, kind=EventKind.resume, timestamp=raw.date)
            ]
        case RawEventType.rewind:
            return [
                PumpHistoryEvent(id=event_id, kind=EventKind.rewind, timestamp=raw.date)
            ]
        case RawEventType.prime:
            return [
                PumpHistoryEvent(id=event_id, kind=EventKind.prime, timestamp=raw.date)
            ]

        case (
            RawEventType.alarm
            | RawEventType.alarm_clear
            | RawEventType.basal
            | RawEventType.replace_component
            | RawEventType.other
        ):
            return []

        case _ as unreachable:
            assert_never(unreachable)


def _is_near_duplicate(a: PumpHistoryEvent, b: PumpHistoryEvent) -> bool:
    """Two bolus events describing the same delivery."""
    if abs(a.timestamp - b.timestamp) >= DUPLICATE_BOLUS_WINDOW:
        return False
    if a.automatic != b.automatic:
        return False
    amount_a = a.effective_insulin_amount or 0.0
    amount_b = b.effective_insulin_amount or 0.0
    return abs(amount_a - amount_b) < PULSE_AMOUNT_TOLERANCE


def _dedupe_boluses(boluses: list[PumpHistoryEvent]) -> list[PumpHistoryEvent]:
    """Collapse near-duplicates, keeping the most specific classification."""
    ranked = sorted(boluses, key=lambda e: _BOLUS_RANK[e.kind], reverse=True)
    kept: list[PumpHistoryEvent] = []
    for event in ranked:
        if any(_is_near_duplicate(event, other) for other in kept):
            continue
        kept.append(event)
    return kept


class PumpHistoryLedger:
    """Rolling, persisted window of classified pump events.

    Writes are serialized by an asyncio lock; each write merges by event
    ID, purges events older than the retention window and notifies the
    registered observers with the resulting ledger.
    """

    def __init__(
        self,
        pulse_store: PulseStore,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        retention: timedelta | None = None,
        smb_basal_enabled: Callable[[], bool] | None = None,
    ):
        self._pulses = pulse_store
        self._session_maker = session_maker
        self.retention = retention or timedelta(
            hours=settings.pump_history_retention_hours
        )
        self._smb_basal_enabled = smb_basal_enabled or (
            lambda: settings.smb_basal_enabled
        )
        self._lock = asyncio.Lock()
        self._observers: list[PumpHistoryObserver] = []

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker or get_session_maker()

    def register(self, observer: PumpHistoryObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unregister(self, observer: PumpHistoryObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def store_raw_events(
        self, raw_events: Iterable[RawPumpEvent], now: datetime | None = None
    ) -> list[PumpHistoryEvent]:
        """Classify pump records and store the resulting events.

        Args:
            raw_events: Records reported by the pump driver
            now: Reference time for the retention purge

        Returns:
            The ledger after the write (empty on storage failure)
        """
        enabled = self._smb_basal_enabled()
        pulses = await self._pulses.all() if enabled else []

        events: list[PumpHistoryEvent] = []
        for raw in raw_events:
            events.extend(classify_raw_event(raw, pulses, enabled))

        logger.debug("Classified pump records", event_count=len(events))
        return await self.store(events, now=now)

    async def store(
        self, events: Iterable[PumpHistoryEvent], now: datetime | None = None
    ) -> list[PumpHistoryEvent]:
        """Merge events into the ledger and notify observers.

        The merge, the retention purge and the re-read run in a single
        transaction while holding the ledger lock.
        """
        now = now or datetime.now(UTC)
        cutoff = now - self.retention
        incoming = list(events)

        async with self._lock:
            try:
                async with self._sessions()() as db, db.begin():
                    for event in incoming:
                        await db.merge(PumpHistoryRecord(**event.model_dump()))
                    await db.execute(
                        delete(PumpHistoryRecord).where(PumpHistoryRecord.timestamp < cutoff)
                    )
                    result = await db.execute(
                        select(PumpHistoryRecord).order_by(desc(PumpHistoryRecord.timestamp))
                    )
                    stored = [
                        PumpHistoryEvent.model_validate(record)
                        for record in result.scalars().all()
                    ]
            except SQLAlchemyError:
                logger.exception(
                    "Failed to store pump history events",
                    event_count=len(incoming),
                )
                return []

        logger.info(
            "Pump history updated",
            stored=len(incoming),
            ledger_size=len(stored),
        )
        await self._notify(stored)
        return stored

    async def _notify(self, events: list[PumpHistoryEvent]) -> None:
        observers = list(self._observers)
        if not observers:
            return
        results = await asyncio.gather(
            *(observer.pump_history_did_update(events) for observer in observers),
            return_exceptions=True,
        )
        for observer, result in zip(observers, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Pump history observer failed",
                    observer=type(observer).__name__,
                    error=str(result),
                )

    async def recent(self) -> list[PumpHistoryEvent]:
        """Return the stored events, most recent first."""
        try:
            async with self._sessions()() as db:
                result = await db.execute(
                    select(PumpHistoryRecord).order_by(desc(PumpHistoryRecord.timestamp))
                )
                records = result.scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to load pump history")
            return []
        return [PumpHistoryEvent.model_validate(record) for record in records]

    async def current_temp_basal(self) -> TempBasalState | None:
        """The newest temp basal in the ledger, or None if there is none."""
        events = await self.recent()
        by_id = {event.id: event for event in events}

        for event in events:
            if event.kind != EventKind.temp_basal_rate:
                continue
            parent = by_id.get(event.id.removeprefix("_"))
            if parent is None or parent.kind != EventKind.temp_basal_duration:
                continue
            return TempBasalState(
                rate=event.rate or 0.0,
                started_at=event.timestamp,
                duration_minutes=parent.duration_minutes or 0,
            )
        return None

    async def store_journal_carbs(
        self, grams: int, at: datetime | None = None
    ) -> list[PumpHistoryEvent]:
        """Record carbs entered on the pump."""
        event = PumpHistoryEvent(
            id=str(uuid.uuid4()),
            kind=EventKind.journal_carbs,
            timestamp=at or datetime.now(UTC),
            carb_input=grams,
        )
        return await self.store([event], now=event.timestamp)

    async def save_cancel_temp_events(
        self, at: datetime | None = None
    ) -> list[PumpHistoryEvent]:
        """Record a temp basal cancel as a zero-rate, zero-duration pair."""
        at = at or datetime.now(UTC)
        event_id = str(uuid.uuid4())
        return await self.store(
            [
                PumpHistoryEvent(
                    id=event_id,
                    kind=EventKind.temp_basal_duration,
                    timestamp=at,
                    duration_minutes=0,
                ),
                PumpHistoryEvent(
                    id=rate_event_id(event_id),
                    kind=EventKind.temp_basal_rate,
                    timestamp=at,
                    rate=0.0,
                    duration_minutes=0,
                ),
            ],
            now=at,
        )

    async def build_unsynced_records(
        self, already_recorded: Iterable[TreatmentRecord] = ()
    ) -> list[TreatmentRecord]:
        """Treatment records reconstructed from the ledger, minus known ones.

        Args:
            already_recorded: Records the external log already holds

        Returns:
            Records not yet uploaded, most recent first
        """
        events = await self.recent()
        by_id = {event.id: event for event in events}

        records: list[TreatmentRecord] = []
        boluses: list[PumpHistoryEvent] = []

        for event in events:
            match event.kind:
                case EventKind.temp_basal_duration:
                    rate = by_id.get(rate_event_id(event.id))
                    if rate is None or rate.timestamp != event.timestamp:
                        continue
                    records.append(
                        TreatmentRecord(
                            event_type=TreatmentType.temp_basal,
                            created_at=event.timestamp,
                            duration=event.duration_minutes,
                            rate=rate.rate,
                            absolute=rate.rate,
                            automatic=event.automatic,
                            source_event_id=event.id,
                        )
                    )
                case EventKind.bolus | EventKind.smb | EventKind.smb_basal:
                    boluses.append(event)
                case EventKind.journal_carbs:
                    records.append(
                        TreatmentRecord(
                            event_type=TreatmentType.carb_correction,
                            created_at=event.timestamp,
                            carbs=event.carb_input,
                            source_event_id=event.id,
                        )
                    )
                case (
                    EventKind.temp_basal_rate
                    | EventKind.suspend
                    | EventKind.resume
                    | EventKind.rewind
                    | EventKind.prime
                ):
                    pass
                case _ as unreachable:
                    assert_never(unreachable)

        for event in _dedupe_boluses(boluses):
            records.append(
                TreatmentRecord(
                    event_type=_BOLUS_TREATMENT[event.kind],
                    created_at=event.timestamp,
                    insulin=event.effective_insulin_amount,
                    automatic=event.automatic,
                    source_event_id=event.id,
                )
            )

        known = set(already_recorded)
        unsynced = [record for record in records if record not in known]
        unsynced.sort(key=lambda record: record.created_at, reverse=True)
        return unsynced
