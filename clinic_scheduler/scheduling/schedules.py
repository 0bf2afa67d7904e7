"""Persistence of ``DoctorAvailability`` and the doctor-facing schedule edits."""

import logging
from collections.abc import Callable
from datetime import date
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_scheduler.core.roles import Role
from clinic_scheduler.core.timeslots import format_24h
from clinic_scheduler.models.schedule import BlockedTime, DoctorSchedule
from clinic_scheduler.scheduling.availability import BlockedInterval, DaySchedule, DoctorAvailability
from clinic_scheduler.scheduling.directory import DoctorDirectory
from clinic_scheduler.scheduling.notifications import NotificationDispatcher, NotificationEvent, NotificationKind

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ScheduleRepository:
    def load(self, db: Session, doctor_id: int, for_update: bool = False) -> DoctorAvailability | None:
        statement = select(DoctorSchedule).where(DoctorSchedule.doctor_id == doctor_id)
        if for_update:
            statement = statement.with_for_update()

        row = db.scalars(statement).first()
        if row is None:
            return None

        blocked_rows = db.scalars(
            select(BlockedTime)
            .where(BlockedTime.doctor_id == doctor_id)
            .order_by(BlockedTime.date.asc(), BlockedTime.start_minute.asc())
        ).all()

        return DoctorAvailability(
            doctor_id=doctor_id,
            weekly_template={day: DaySchedule(**schedule) for day, schedule in row.weekly_template.items()},
            slot_duration_minutes=row.slot_duration_minutes,
            max_patients_per_day=row.max_patients_per_day,
            blocked_intervals=[
                BlockedInterval(
                    id=blocked.id,
                    date=blocked.date,
                    start=blocked.start_minute,
                    end=blocked.end_minute,
                    reason=blocked.reason,
                )
                for blocked in blocked_rows
            ],
        )

    def get_or_create(self, db: Session, doctor_id: int, for_update: bool = False) -> DoctorAvailability:
        availability = self.load(db, doctor_id, for_update=for_update)
        if availability is not None:
            return availability

        availability = DoctorAvailability(doctor_id=doctor_id)
        self.save(db, availability)
        logger.info('Created default schedule for doctor %s', doctor_id)
        return availability

    def save(self, db: Session, availability: DoctorAvailability) -> DoctorAvailability:
        row = db.scalars(select(DoctorSchedule).where(DoctorSchedule.doctor_id == availability.doctor_id)).first()
        if row is None:
            row = DoctorSchedule(doctor_id=availability.doctor_id)
            db.add(row)

        row.weekly_template = {day: schedule.model_dump() for day, schedule in availability.weekly_template.items()}
        row.slot_duration_minutes = availability.slot_duration_minutes
        row.max_patients_per_day = availability.max_patients_per_day

        kept_ids = {interval.id for interval in availability.blocked_intervals if interval.id is not None}
        for blocked in db.scalars(select(BlockedTime).where(BlockedTime.doctor_id == availability.doctor_id)):
            if blocked.id not in kept_ids:
                db.delete(blocked)

        for interval in availability.blocked_intervals:
            if interval.id is not None:
                continue
            blocked = BlockedTime(
                doctor_id=availability.doctor_id,
                date=interval.date,
                start_minute=interval.start,
                end_minute=interval.end,
                reason=interval.reason,
            )
            db.add(blocked)
            db.flush()
            interval.id = blocked.id

        db.flush()
        return availability


class ScheduleManager:
    """Doctor and admin edits to a doctor's availability.

    Each edit loads the schedule with a row lock, applies one validated
    mutation and writes it back in the same transaction.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher,
        directory: DoctorDirectory | None = None,
        repository: ScheduleRepository | None = None,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._directory = directory or DoctorDirectory(session_factory)
        self._repository = repository or ScheduleRepository()

    def get_schedule(self, doctor_id: int) -> DoctorAvailability:
        self._directory.get_doctor(doctor_id)
        return self._in_transaction(doctor_id, lambda db: self._repository.get_or_create(db, doctor_id))

    def set_weekly_template(self, doctor_id: int, template: dict[str, DaySchedule | dict]) -> DoctorAvailability:
        availability = self._edit(doctor_id, lambda schedule: schedule.set_weekly_template(template))
        self._notify_schedule_change(doctor_id, 'Weekly schedule has been updated')
        return availability

    def set_day_schedule(self, doctor_id: int, day: str, schedule: DaySchedule | dict) -> DoctorAvailability:
        return self._edit(doctor_id, lambda availability: availability.set_day_schedule(day, schedule))

    def set_slot_duration(self, doctor_id: int, minutes: int) -> DoctorAvailability:
        return self._edit(doctor_id, lambda availability: availability.set_slot_duration(minutes))

    def set_max_patients_per_day(self, doctor_id: int, limit: int) -> DoctorAvailability:
        return self._edit(doctor_id, lambda availability: availability.set_max_patients_per_day(limit))

    def add_blocked_interval(self, doctor_id: int, interval: BlockedInterval | dict) -> BlockedInterval:
        self._directory.get_doctor(doctor_id)

        def add(db: Session) -> BlockedInterval:
            availability = self._repository.get_or_create(db, doctor_id, for_update=True)
            added = availability.add_blocked_interval(interval)
            self._repository.save(db, availability)
            return added

        blocked = self._in_transaction(doctor_id, add)

        self._notify_schedule_change(
            doctor_id,
            f'Time blocked on {blocked.date.isoformat()} from {format_24h(blocked.start)} '
            f'to {format_24h(blocked.end)}. Reason: {blocked.reason or "Not specified"}',
        )
        return blocked

    def remove_blocked_interval(self, doctor_id: int, interval_id: int) -> None:
        self._edit(doctor_id, lambda availability: availability.remove_blocked_interval(interval_id))

    def list_blocked_intervals(
        self,
        doctor_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[BlockedInterval]:
        with self._session_factory() as db:
            availability = self._repository.load(db, doctor_id)
        if availability is None:
            return []

        return [
            interval
            for interval in availability.blocked_intervals
            if (start_date is None or interval.date >= start_date)
            and (end_date is None or interval.date <= end_date)
        ]

    def _edit(self, doctor_id: int, mutate: Callable[[DoctorAvailability], object]) -> DoctorAvailability:
        self._directory.get_doctor(doctor_id)

        def apply(db: Session) -> DoctorAvailability:
            availability = self._repository.get_or_create(db, doctor_id, for_update=True)
            mutate(availability)
            self._repository.save(db, availability)
            return availability

        return self._in_transaction(doctor_id, apply)

    def _in_transaction(self, doctor_id: int, work: Callable[[Session], T]) -> T:
        try:
            with self._session_factory() as db, db.begin():
                return work(db)
        except IntegrityError:
            # Another request created this doctor's first schedule row; the retry loads it.
            logger.info('Schedule for doctor %s was created concurrently; retrying', doctor_id)

        with self._session_factory() as db, db.begin():
            return work(db)

    def _notify_schedule_change(self, doctor_id: int, detail: str) -> None:
        self._dispatcher.notify(
            NotificationEvent(
                kind=NotificationKind.SCHEDULE_CHANGED,
                recipient_role=Role.ADMIN,
                doctor_id=doctor_id,
                detail=detail,
            )
        )
