"""Booking Ledger: the set of committed slot-times per doctor and date.

This is the only place double booking is prevented. A reservation is one
``INSERT`` into ``booked_slots`` and the unique constraint on
``(doctor_id, slot_date, slot_minute)`` makes the database reject the loser
of any race, so there is no read-check-write window in application code.
"""

import logging
import time
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.errors import LedgerUnavailable
from clinic_scheduler.models.ledger import BookedSlot

logger = logging.getLogger(__name__)


class ReserveResult(str, Enum):
    RESERVED = 'reserved'
    CONFLICT = 'conflict'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BookingLedger:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_retries: int = config.LEDGER_MAX_RETRIES,
        backoff_seconds: float = config.LEDGER_RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._max_retries = max(1, max_retries)
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def try_reserve(self, doctor_id: int, slot_date: date, slot_minute: int) -> ReserveResult:
        for attempt in range(1, self._max_retries + 1):
            try:
                with self._session_factory() as db, db.begin():
                    db.add(
                        BookedSlot(
                            doctor_id=doctor_id,
                            slot_date=slot_date,
                            slot_minute=slot_minute,
                            reserved_at=_utcnow(),
                        )
                    )
                return ReserveResult.RESERVED
            except IntegrityError:
                return ReserveResult.CONFLICT
            except OperationalError:
                logger.warning(
                    'Ledger reserve attempt %s/%s failed for doctor=%s date=%s minute=%s',
                    attempt, self._max_retries, doctor_id, slot_date, slot_minute,
                )
                self._backoff(attempt)

        # Contention we cannot get through is reported as a taken slot.
        logger.warning(
            'Ledger reserve retries exhausted for doctor=%s date=%s minute=%s; treating slot as taken',
            doctor_id, slot_date, slot_minute,
        )
        return ReserveResult.CONFLICT

    def release(self, doctor_id: int, slot_date: date, slot_minute: int) -> None:
        """Remove a slot-time; releasing a slot that is not reserved is a no-op."""
        self._write_with_retry(
            'release',
            delete(BookedSlot).where(
                BookedSlot.doctor_id == doctor_id,
                BookedSlot.slot_date == slot_date,
                BookedSlot.slot_minute == slot_minute,
            ),
        )

    def count_for_day(self, doctor_id: int, slot_date: date) -> int:
        with self._session_factory() as db:
            return db.scalar(
                select(func.count(BookedSlot.id)).where(
                    BookedSlot.doctor_id == doctor_id,
                    BookedSlot.slot_date == slot_date,
                )
            ) or 0

    def booked_minutes(self, doctor_id: int, slot_date: date) -> set[int]:
        with self._session_factory() as db:
            return set(
                db.scalars(
                    select(BookedSlot.slot_minute).where(
                        BookedSlot.doctor_id == doctor_id,
                        BookedSlot.slot_date == slot_date,
                    )
                )
            )

    def is_reserved(self, doctor_id: int, slot_date: date, slot_minute: int) -> bool:
        return slot_minute in self.booked_minutes(doctor_id, slot_date)

    def release_orphans(
        self,
        doctor_id: int,
        slot_date: date,
        referenced_minutes: Iterable[int],
        grace: timedelta = timedelta(seconds=config.ORPHAN_RESERVATION_GRACE_SECONDS),
    ) -> int:
        """Drop reservations no appointment points at, once they are older than ``grace``.

        Reservations younger than ``grace`` may belong to a booking that has
        reserved but not yet saved its appointment, so they are left alone.
        """
        cutoff = _utcnow() - grace
        statement = delete(BookedSlot).where(
            BookedSlot.doctor_id == doctor_id,
            BookedSlot.slot_date == slot_date,
            BookedSlot.reserved_at < cutoff,
        )
        referenced = list(referenced_minutes)
        if referenced:
            statement = statement.where(BookedSlot.slot_minute.not_in(referenced))

        removed = self._write_with_retry('release_orphans', statement)
        if removed:
            logger.warning('Released %s orphaned reservation(s) for doctor=%s date=%s', removed, doctor_id, slot_date)
        return removed

    def _write_with_retry(self, operation: str, statement) -> int:
        for attempt in range(1, self._max_retries + 1):
            try:
                with self._session_factory() as db, db.begin():
                    return db.execute(statement, execution_options={'synchronize_session': False}).rowcount or 0
            except OperationalError:
                logger.warning('Ledger %s attempt %s/%s failed', operation, attempt, self._max_retries)
                self._backoff(attempt)

        raise LedgerUnavailable()

    def _backoff(self, attempt: int) -> None:
        if attempt < self._max_retries and self._backoff_seconds:
            self._sleep(self._backoff_seconds * attempt)
