"""Scheduling Service: the entry points the API layer calls.

Every state change follows the same order: validate against the
availability model, claim or release ledger slots, persist the appointment,
then hand notifications to the dispatcher. A ledger reservation that never
gets a saved appointment is released before the error is returned. When
that release itself fails, the reservation is swept up by
``reconcile_ledger`` once it is older than the orphan grace period.
"""

import logging
import time
from collections.abc import Callable
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.errors import (
    DailyCapacityExceeded,
    DoctorUnavailable,
    InvalidRequest,
    RequestTimeout,
    SchedulingError,
    SlotUnavailable,
    TransientError,
)
from clinic_scheduler.core.roles import Role
from clinic_scheduler.core.timeslots import format_time, parse_time
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.scheduling.appointments import (
    AppointmentStatus,
    AppointmentStore,
    ensure_can_cancel,
    ensure_can_complete,
    ensure_can_reschedule,
    ensure_transition,
)
from clinic_scheduler.scheduling.availability import DoctorAvailability
from clinic_scheduler.scheduling.directory import DoctorDirectory, DoctorProfile
from clinic_scheduler.scheduling.ledger import BookingLedger, ReserveResult
from clinic_scheduler.scheduling.notifications import NotificationDispatcher, NotificationEvent, NotificationKind
from clinic_scheduler.scheduling.schedules import ScheduleRepository
from clinic_scheduler.scheduling.slots import SlotBuckets, generate_slots

logger = logging.getLogger(__name__)


class Deadline:
    def __init__(self, timeout: float | None, clock: Callable[[], float]):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout

    def check(self) -> None:
        if self._expires_at is not None and self._clock() >= self._expires_at:
            raise RequestTimeout()


class SchedulingService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher,
        ledger: BookingLedger | None = None,
        appointments: AppointmentStore | None = None,
        directory: DoctorDirectory | None = None,
        schedules: ScheduleRepository | None = None,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
        request_timeout: float | None = config.REQUEST_TIMEOUT_SECONDS,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._ledger = ledger or BookingLedger(session_factory)
        self._appointments = appointments or AppointmentStore(session_factory)
        self._directory = directory or DoctorDirectory(session_factory)
        self._schedules = schedules or ScheduleRepository()
        self._clock = clock
        self._today = today
        self._request_timeout = request_timeout

    @property
    def ledger(self) -> BookingLedger:
        return self._ledger

    def list_available_slots(self, doctor_id: int, slot_date: date) -> SlotBuckets:
        doctor = self._directory.get_doctor(doctor_id)
        if not doctor.available:
            return SlotBuckets()

        availability = self._load_availability(doctor_id)
        booked = self._ledger.booked_minutes(doctor_id, slot_date)
        return generate_slots(availability, slot_date).filtered(
            lambda minute: minute not in booked and not availability.is_blocked(slot_date, minute)
        )

    def book_slot(
        self,
        doctor_id: int,
        patient_id: int,
        slot_date: date,
        slot_time: str | int,
        timeout: float | None = None,
    ) -> Appointment:
        deadline = self._deadline(timeout)
        slot_minute = parse_time(slot_time)
        doctor = self._available_doctor(doctor_id)
        availability = self._load_availability(doctor_id)

        self._ensure_bookable(availability, slot_date, slot_minute)
        self._ensure_capacity(availability, slot_date, already_held=0)

        deadline.check()
        self._reserve(doctor_id, slot_date, slot_minute)

        try:
            deadline.check()
            self._ensure_capacity(availability, slot_date, already_held=1)
            appointment = self._appointments.create(
                doctor_id=doctor_id,
                patient_id=patient_id,
                slot_date=slot_date,
                slot_minute=slot_minute,
                fee_amount=doctor.fee_amount,
            )
        except SchedulingError:
            self._release_slot(doctor_id, slot_date, slot_minute)
            raise
        except SQLAlchemyError as exc:
            logger.exception('Failed to save appointment for doctor=%s date=%s time=%s', doctor_id, slot_date, slot_minute)
            self._release_slot(doctor_id, slot_date, slot_minute)
            raise TransientError('Could not save the appointment. Please retry.') from exc

        logger.info(
            'Booked appointment %s: doctor=%s patient=%s %s %s',
            appointment.id, doctor_id, patient_id, slot_date, format_time(slot_minute),
        )
        self._dispatcher.notify_all([
            NotificationEvent.for_appointment(NotificationKind.APPOINTMENT_BOOKED, Role.PATIENT, appointment),
            NotificationEvent.for_appointment(NotificationKind.APPOINTMENT_BOOKED, Role.DOCTOR, appointment),
        ])
        return appointment

    def cancel_appointment(self, appointment_id: int, requester_id: int, requester_role: Role) -> None:
        requester_role = Role(requester_role)
        appointment = self._appointments.get(appointment_id)
        ensure_can_cancel(appointment, requester_id, requester_role)

        # Status flips first; the ledger only ever lags behind the appointment.
        cancelled = self._appointments.transition(
            appointment_id,
            AppointmentStatus.CANCELLED,
            expected_version=appointment.version,
            cancelled_by=requester_role,
        )
        self._release_slot(cancelled.doctor_id, cancelled.appointment_date, cancelled.slot_minute)
        logger.info('Appointment %s cancelled by %s %s', appointment_id, requester_role.value, requester_id)

        if requester_role == Role.PATIENT:
            recipients = [Role.DOCTOR, Role.ADMIN]
        else:
            recipients = [Role.PATIENT]
        self._dispatcher.notify_all([
            NotificationEvent.for_appointment(
                NotificationKind.APPOINTMENT_CANCELLED,
                recipient,
                cancelled,
                detail=f'Cancelled by {requester_role.value}',
            )
            for recipient in recipients
        ])

    def complete_appointment(self, appointment_id: int, doctor_id: int) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        ensure_can_complete(appointment, doctor_id)
        ensure_transition(appointment.status, AppointmentStatus.COMPLETED)
        if appointment.appointment_date > self._today():
            raise InvalidRequest('Only appointments on or before today can be marked completed.')

        completed = self._appointments.transition(
            appointment_id,
            AppointmentStatus.COMPLETED,
            expected_version=appointment.version,
        )
        logger.info('Appointment %s completed by doctor %s', appointment_id, doctor_id)
        self._dispatcher.notify(
            NotificationEvent.for_appointment(NotificationKind.APPOINTMENT_COMPLETED, Role.PATIENT, completed)
        )
        return completed

    def reschedule_appointment(
        self,
        appointment_id: int,
        new_date: date,
        new_time: str | int,
        requester_id: int | None = None,
        requester_role: Role | None = None,
        timeout: float | None = None,
    ) -> Appointment:
        deadline = self._deadline(timeout)
        new_minute = parse_time(new_time)
        appointment = self._appointments.get(appointment_id)
        if requester_role is not None:
            ensure_can_reschedule(appointment, requester_id, Role(requester_role))
        ensure_transition(appointment.status, AppointmentStatus.ACTIVE)

        old_date, old_minute = appointment.appointment_date, appointment.slot_minute
        if (old_date, old_minute) == (new_date, new_minute):
            return appointment

        doctor_id = appointment.doctor_id
        self._available_doctor(doctor_id)
        availability = self._load_availability(doctor_id)
        self._ensure_bookable(availability, new_date, new_minute)
        # Moving within the same day does not add a patient to that day.
        same_day = 1 if new_date == old_date else 0
        self._ensure_capacity(availability, new_date, already_held=same_day)

        deadline.check()
        self._reserve(doctor_id, new_date, new_minute)

        try:
            deadline.check()
            self._ensure_capacity(availability, new_date, already_held=1 + same_day)
            moved = self._appointments.move(
                appointment_id,
                expected_version=appointment.version,
                new_date=new_date,
                new_minute=new_minute,
            )
        except SchedulingError:
            self._release_slot(doctor_id, new_date, new_minute)
            raise
        except SQLAlchemyError as exc:
            logger.exception('Failed to move appointment %s to %s %s', appointment_id, new_date, new_minute)
            self._release_slot(doctor_id, new_date, new_minute)
            raise TransientError('Could not reschedule the appointment. Please retry.') from exc

        self._release_slot(doctor_id, old_date, old_minute)
        logger.info(
            'Appointment %s rescheduled from %s %s to %s %s',
            appointment_id, old_date, format_time(old_minute), new_date, format_time(new_minute),
        )
        self._dispatcher.notify_all([
            NotificationEvent.for_appointment(
                NotificationKind.APPOINTMENT_RESCHEDULED,
                recipient,
                moved,
                old_date=old_date,
                old_time=format_time(old_minute),
            )
            for recipient in (Role.DOCTOR, Role.PATIENT, Role.ADMIN)
        ])
        return moved

    def get_appointment(self, appointment_id: int) -> Appointment:
        return self._appointments.get(appointment_id)

    def list_appointments(
        self,
        patient_id: int | None = None,
        doctor_id: int | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[Appointment]:
        return self._appointments.list(patient_id=patient_id, doctor_id=doctor_id, status=status)

    def reconcile_ledger(self, doctor_id: int, slot_date: date) -> int:
        """Release reservations no live appointment points at.

        These are left behind by a crash between reserve and save, or by a
        release that failed after a cancel or reschedule had committed.
        """
        self._directory.get_doctor(doctor_id)
        referenced = {
            appointment.slot_minute
            for appointment in self._appointments.list(doctor_id=doctor_id, slot_date=slot_date)
            if appointment.status != AppointmentStatus.CANCELLED.value
        }
        return self._ledger.release_orphans(doctor_id, slot_date, referenced)

    def _deadline(self, timeout: float | None) -> Deadline:
        return Deadline(timeout if timeout is not None else self._request_timeout, self._clock)

    def _available_doctor(self, doctor_id: int) -> DoctorProfile:
        doctor = self._directory.get_doctor(doctor_id)
        if not doctor.available:
            raise DoctorUnavailable()
        return doctor

    def _load_availability(self, doctor_id: int) -> DoctorAvailability:
        with self._session_factory() as db:
            availability = self._schedules.load(db, doctor_id)
        return availability or DoctorAvailability(doctor_id=doctor_id)

    def _ensure_bookable(self, availability: DoctorAvailability, slot_date: date, slot_minute: int) -> None:
        if slot_minute not in generate_slots(availability, slot_date).all:
            raise SlotUnavailable(f'{format_time(slot_minute)} is outside the doctor\'s schedule on {slot_date.isoformat()}.')
        if not availability.is_open(slot_date, slot_minute):
            raise SlotUnavailable(f'{format_time(slot_minute)} is blocked on {slot_date.isoformat()}.')

    def _ensure_capacity(self, availability: DoctorAvailability, slot_date: date, already_held: int) -> None:
        booked = self._ledger.count_for_day(availability.doctor_id, slot_date)
        if booked - already_held >= availability.max_patients_per_day:
            raise DailyCapacityExceeded()

    def _reserve(self, doctor_id: int, slot_date: date, slot_minute: int) -> None:
        if self._ledger.try_reserve(doctor_id, slot_date, slot_minute) is ReserveResult.RESERVED:
            return

        # The holder may be an orphan; sweep the day once before giving up.
        if self._sweep_orphans(doctor_id, slot_date):
            if self._ledger.try_reserve(doctor_id, slot_date, slot_minute) is ReserveResult.RESERVED:
                return

        logger.info('Slot taken: doctor=%s date=%s time=%s', doctor_id, slot_date, format_time(slot_minute))
        raise SlotUnavailable()

    def _sweep_orphans(self, doctor_id: int, slot_date: date) -> int:
        try:
            return self.reconcile_ledger(doctor_id, slot_date)
        except (TransientError, SQLAlchemyError):
            logger.exception('Orphan sweep failed for doctor=%s date=%s', doctor_id, slot_date)
            return 0

    def _release_slot(self, doctor_id: int, slot_date: date, slot_minute: int) -> None:
        try:
            self._ledger.release(doctor_id, slot_date, slot_minute)
        except (TransientError, SQLAlchemyError):
            # Left for reconcile_ledger; the caller still gets the original outcome.
            logger.exception(
                'Could not release reservation doctor=%s date=%s time=%s',
                doctor_id, slot_date, format_time(slot_minute),
            )
