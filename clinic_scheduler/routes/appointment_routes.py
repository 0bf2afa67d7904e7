import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.auth.dependencies import Requester, get_current_requester
from clinic_scheduler.core.errors import SchedulingError, TransientError, to_http_exception
from clinic_scheduler.core.roles import Role
from clinic_scheduler.core.services import get_scheduling_service
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.routes.availability_routes import DATABASE_UNAVAILABLE, ensure_database_ready
from clinic_scheduler.scheduling.appointments import AppointmentStatus
from clinic_scheduler.scheduling.service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=['appointments'], dependencies=[Depends(ensure_database_ready)])


class BookAppointmentRequest(BaseModel):
    doctor_id: int
    date: date
    time: str
    patient_id: int | None = None

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Slot time is required.')
        return normalized


class RescheduleAppointmentRequest(BaseModel):
    date: date
    time: str

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Slot time is required.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    date: date
    time: str
    fee_amount: int
    status: str
    payment_confirmed: bool
    cancelled_by: str | None = None
    created_at: datetime | None = None
    version: int


def appointment_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        date=appointment.appointment_date,
        time=appointment.time,
        fee_amount=appointment.fee_amount,
        status=appointment.status,
        payment_confirmed=appointment.payment_confirmed,
        cancelled_by=appointment.cancelled_by,
        created_at=appointment.created_at,
        version=appointment.version,
    )


def ensure_can_view(requester: Requester, appointment: Appointment) -> None:
    if requester.role == Role.ADMIN:
        return
    if requester.role == Role.PATIENT and appointment.patient_id == requester.id:
        return
    if requester.role == Role.DOCTOR and appointment.doctor_id == requester.id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only the patient, the doctor, or an admin can view this appointment.',
    )


def resolve_patient_id(requester: Requester, patient_id: int | None) -> int:
    if requester.role == Role.PATIENT:
        if patient_id is not None and patient_id != requester.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only book appointments for themselves.',
            )
        return requester.id

    if requester.role == Role.ADMIN:
        if patient_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='patient_id is required when an admin books an appointment.',
            )
        return patient_id

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only patients and admins can book appointments.',
    )


def _scheduling_error(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, TransientError):
        logger.warning('Transient scheduling failure: %s', exc.detail)
    return to_http_exception(exc)


def _database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    requester: Requester = Depends(get_current_requester),
    service: SchedulingService = Depends(get_scheduling_service),
):
    patient_id = resolve_patient_id(requester, data.patient_id)

    try:
        appointment = service.book_slot(data.doctor_id, patient_id, data.date, data.time)
        return appointment_response(appointment)
    except SchedulingError as exc:
        raise _scheduling_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: int | None = Query(default=None),
    patient_id: int | None = Query(default=None),
    appointment_status: AppointmentStatus | None = Query(default=None, alias='status'),
    requester: Requester = Depends(get_current_requester),
    service: SchedulingService = Depends(get_scheduling_service),
):
    if requester.role == Role.PATIENT:
        patient_id, doctor_id = requester.id, None
    elif requester.role == Role.DOCTOR:
        doctor_id = requester.id

    try:
        appointments = service.list_appointments(
            patient_id=patient_id,
            doctor_id=doctor_id,
            status=appointment_status,
        )
        return [appointment_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    requester: Requester = Depends(get_current_requester),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        appointment = service.get_appointment(appointment_id)
    except SchedulingError as exc:
        raise _scheduling_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc

    ensure_can_view(requester, appointment)
    return appointment_response(appointment)


@router.post('/{appointment_id}/cancel', status_code=status.HTTP_204_NO_CONTENT)
def cancel_appointment(
    appointment_id: int,
    requester: Requester = Depends(get_current_requester),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        service.cancel_appointment(appointment_id, requester.id, requester.role)
    except SchedulingError as exc:
        raise _scheduling_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    requester: Requester = Depends(get_current_requester),
    service: SchedulingService = Depends(get_scheduling_service),
):
    if requester.role != Role.DOCTOR:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only doctors can mark appointments completed.',
        )

    try:
        return appointment_response(service.complete_appointment(appointment_id, requester.id))
    except SchedulingError as exc:
        raise _scheduling_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    requester: Requester = Depends(get_current_requester),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        appointment = service.reschedule_appointment(
            appointment_id,
            data.date,
            data.time,
            requester_id=requester.id,
            requester_role=requester.role,
        )
        return appointment_response(appointment)
    except SchedulingError as exc:
        raise _scheduling_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc
