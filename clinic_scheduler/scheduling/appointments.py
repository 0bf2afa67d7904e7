"""Appointment lifecycle.

::

    (book) --> active --(cancel)--> cancelled
                 |  ^
                 |  +---(reschedule)
                 +------(complete)--> completed

``cancelled`` and ``completed`` are terminal. ``AppointmentStore`` writes
through the ORM, so each update is a compare-and-swap on ``version``; a lost
race surfaces as ``StaleAppointment`` instead of silently overwriting.
"""

import logging
from collections.abc import Callable
from datetime import date
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from clinic_scheduler.core.errors import AppointmentNotActive, AppointmentNotFound, StaleAppointment, Unauthorized
from clinic_scheduler.core.roles import Role
from clinic_scheduler.models.appointment import Appointment

logger = logging.getLogger(__name__)


class AppointmentStatus(str, Enum):
    ACTIVE = 'active'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


ALLOWED_TRANSITIONS = {
    AppointmentStatus.ACTIVE: {AppointmentStatus.ACTIVE, AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED},
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.COMPLETED: set(),
}


def ensure_transition(current: str, target: AppointmentStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[AppointmentStatus(current)]:
        raise AppointmentNotActive(f'Appointment is {current}; it can no longer be changed.')


def ensure_can_cancel(appointment: Appointment, requester_id: int, requester_role: Role) -> None:
    if requester_role == Role.ADMIN:
        return
    if requester_role == Role.PATIENT and appointment.patient_id == requester_id:
        return
    if requester_role == Role.DOCTOR and appointment.doctor_id == requester_id:
        return
    raise Unauthorized('Only the patient, the doctor, or an admin can cancel this appointment.')


def ensure_can_reschedule(appointment: Appointment, requester_id: int, requester_role: Role) -> None:
    try:
        ensure_can_cancel(appointment, requester_id, requester_role)
    except Unauthorized as exc:
        raise Unauthorized('Only the patient, the doctor, or an admin can reschedule this appointment.') from exc


def ensure_can_complete(appointment: Appointment, doctor_id: int) -> None:
    if appointment.doctor_id != doctor_id:
        raise Unauthorized('Only the appointment\'s doctor can mark it completed.')


class AppointmentStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create(self, doctor_id: int, patient_id: int, slot_date: date, slot_minute: int, fee_amount: int) -> Appointment:
        with self._session_factory() as db, db.begin():
            appointment = Appointment(
                doctor_id=doctor_id,
                patient_id=patient_id,
                appointment_date=slot_date,
                slot_minute=slot_minute,
                fee_amount=fee_amount,
                status=AppointmentStatus.ACTIVE.value,
                payment_confirmed=False,
            )
            db.add(appointment)
            db.flush()
        return appointment

    def get(self, appointment_id: int) -> Appointment:
        with self._session_factory() as db:
            appointment = db.get(Appointment, appointment_id)
            if appointment is None:
                raise AppointmentNotFound()
            return appointment

    def list(
        self,
        patient_id: int | None = None,
        doctor_id: int | None = None,
        status: AppointmentStatus | None = None,
        slot_date: date | None = None,
    ) -> list[Appointment]:
        statement = select(Appointment)
        if patient_id is not None:
            statement = statement.where(Appointment.patient_id == patient_id)
        if doctor_id is not None:
            statement = statement.where(Appointment.doctor_id == doctor_id)
        if status is not None:
            statement = statement.where(Appointment.status == status.value)
        if slot_date is not None:
            statement = statement.where(Appointment.appointment_date == slot_date)

        with self._session_factory() as db:
            return list(
                db.scalars(statement.order_by(Appointment.appointment_date.asc(), Appointment.slot_minute.asc()))
            )

    def transition(
        self,
        appointment_id: int,
        target: AppointmentStatus,
        expected_version: int,
        cancelled_by: Role | None = None,
    ) -> Appointment:
        def apply(appointment: Appointment) -> None:
            appointment.status = target.value
            if cancelled_by is not None:
                appointment.cancelled_by = cancelled_by.value

        return self._update(appointment_id, target, expected_version, apply)

    def move(self, appointment_id: int, expected_version: int, new_date: date, new_minute: int) -> Appointment:
        def apply(appointment: Appointment) -> None:
            appointment.appointment_date = new_date
            appointment.slot_minute = new_minute

        return self._update(appointment_id, AppointmentStatus.ACTIVE, expected_version, apply)

    def _update(
        self,
        appointment_id: int,
        target: AppointmentStatus,
        expected_version: int,
        apply: Callable[[Appointment], None],
    ) -> Appointment:
        try:
            with self._session_factory() as db, db.begin():
                appointment = db.get(Appointment, appointment_id)
                if appointment is None:
                    raise AppointmentNotFound()
                ensure_transition(appointment.status, target)
                if appointment.version != expected_version:
                    raise StaleAppointment()
                apply(appointment)
        except StaleDataError as exc:
            logger.info('Appointment %s changed concurrently', appointment_id)
            raise StaleAppointment() from exc
        return appointment
