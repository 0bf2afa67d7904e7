from datetime import date

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from clinic_scheduler.auth.dependencies import Requester
from clinic_scheduler.auth.jwt_handler import create_access_token
from clinic_scheduler.core.roles import Role
from clinic_scheduler.core.services import get_scheduling_service
from clinic_scheduler.routes import appointment_routes
from clinic_scheduler.routes.appointment_routes import (
    BookAppointmentRequest,
    RescheduleAppointmentRequest,
    book_appointment,
    cancel_appointment,
    complete_appointment,
    get_appointment,
    list_appointments,
    reschedule_appointment,
)
from clinic_scheduler.routes.availability_routes import ensure_database_ready
from clinic_scheduler.scheduling.service import SchedulingService

MONDAY = date(2026, 1, 5)
PATIENT = Requester(id=10, role=Role.PATIENT)
ADMIN = Requester(id=1, role=Role.ADMIN)


@pytest.fixture
def service(session_factory, dispatcher) -> SchedulingService:
    return SchedulingService(session_factory, dispatcher, today=lambda: MONDAY, request_timeout=None)


@pytest.fixture
def client(service: SchedulingService):
    app = FastAPI()
    app.include_router(appointment_routes.router, prefix='/appointments')
    app.dependency_overrides[ensure_database_ready] = lambda: None
    app.dependency_overrides[get_scheduling_service] = lambda: service
    return TestClient(app)


def _auth(user_id: int, role: Role) -> dict[str, str]:
    return {'Authorization': f'Bearer {create_access_token(user_id, role)}'}


def test_book_request_rejects_blank_time() -> None:
    with pytest.raises(ValidationError):
        BookAppointmentRequest(doctor_id=1, date=MONDAY, time='   ')


def test_book_appointment_for_patient(service: SchedulingService, doctor) -> None:
    response = book_appointment(
        data=BookAppointmentRequest(doctor_id=doctor.id, date=MONDAY, time=' 9:00 AM '),
        requester=PATIENT,
        service=service,
    )

    assert response.patient_id == PATIENT.id
    assert response.time == '9:00 AM'
    assert response.status == 'active'
    assert response.version == 1


def test_patient_cannot_book_for_someone_else(service: SchedulingService, doctor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        book_appointment(
            data=BookAppointmentRequest(doctor_id=doctor.id, date=MONDAY, time='9:00 AM', patient_id=11),
            requester=PATIENT,
            service=service,
        )

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Patients can only book appointments for themselves.'


def test_admin_booking_requires_patient_id(service: SchedulingService, doctor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        book_appointment(
            data=BookAppointmentRequest(doctor_id=doctor.id, date=MONDAY, time='9:00 AM'),
            requester=ADMIN,
            service=service,
        )

    assert exception_info.value.status_code == 400

    response = book_appointment(
        data=BookAppointmentRequest(doctor_id=doctor.id, date=MONDAY, time='9:00 AM', patient_id=12),
        requester=ADMIN,
        service=service,
    )
    assert response.patient_id == 12


def test_doctor_cannot_book(service: SchedulingService, doctor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        book_appointment(
            data=BookAppointmentRequest(doctor_id=doctor.id, date=MONDAY, time='9:00 AM', patient_id=10),
            requester=Requester(id=doctor.id, role=Role.DOCTOR),
            service=service,
        )

    assert exception_info.value.status_code == 403


def test_booking_taken_slot_returns_conflict(service: SchedulingService, doctor) -> None:
    data = BookAppointmentRequest(doctor_id=doctor.id, date=MONDAY, time='9:00 AM')
    book_appointment(data=data, requester=PATIENT, service=service)

    with pytest.raises(HTTPException) as exception_info:
        book_appointment(data=data, requester=Requester(id=11, role=Role.PATIENT), service=service)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Slot not available. Please choose a different time.'


def test_unknown_doctor_returns_not_found(service: SchedulingService) -> None:
    with pytest.raises(HTTPException) as exception_info:
        book_appointment(
            data=BookAppointmentRequest(doctor_id=999, date=MONDAY, time='9:00 AM'),
            requester=PATIENT,
            service=service,
        )

    assert exception_info.value.status_code == 404


def test_database_failure_returns_service_unavailable(monkeypatch: pytest.MonkeyPatch, service: SchedulingService) -> None:
    def broken_list(*args, **kwargs):
        raise OperationalError('SELECT', {}, Exception('connection refused'))

    monkeypatch.setattr(service, 'list_appointments', broken_list)

    with pytest.raises(HTTPException) as exception_info:
        list_appointments(doctor_id=None, patient_id=None, appointment_status=None, requester=ADMIN, service=service)

    assert exception_info.value.status_code == 503


def test_patients_only_see_their_own_appointments(service: SchedulingService, doctor) -> None:
    service.book_slot(doctor.id, PATIENT.id, MONDAY, '8:00 AM')
    service.book_slot(doctor.id, 11, MONDAY, '8:30 AM')

    mine = list_appointments(doctor_id=None, patient_id=11, appointment_status=None, requester=PATIENT, service=service)
    everyone = list_appointments(doctor_id=None, patient_id=None, appointment_status=None, requester=ADMIN, service=service)

    assert [item.patient_id for item in mine] == [PATIENT.id]
    assert len(everyone) == 2


def test_get_appointment_checks_ownership(service: SchedulingService, doctor) -> None:
    appointment = service.book_slot(doctor.id, PATIENT.id, MONDAY, '8:00 AM')

    assert get_appointment(appointment.id, requester=PATIENT, service=service).id == appointment.id
    as_doctor = get_appointment(appointment.id, requester=Requester(id=doctor.id, role=Role.DOCTOR), service=service)
    assert as_doctor.doctor_id == doctor.id

    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment.id, requester=Requester(id=11, role=Role.PATIENT), service=service)

    assert exception_info.value.status_code == 403


def test_cancel_then_cancel_again_conflicts(service: SchedulingService, doctor) -> None:
    appointment = service.book_slot(doctor.id, PATIENT.id, MONDAY, '8:00 AM')

    cancel_appointment(appointment.id, requester=PATIENT, service=service)

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment.id, requester=PATIENT, service=service)

    assert exception_info.value.status_code == 409


def test_complete_is_doctor_only(service: SchedulingService, doctor) -> None:
    appointment = service.book_slot(doctor.id, PATIENT.id, MONDAY, '8:00 AM')

    with pytest.raises(HTTPException) as exception_info:
        complete_appointment(appointment.id, requester=ADMIN, service=service)
    assert exception_info.value.status_code == 403

    completed = complete_appointment(
        appointment.id,
        requester=Requester(id=doctor.id, role=Role.DOCTOR),
        service=service,
    )
    assert completed.status == 'completed'


def test_reschedule_by_other_patient_is_forbidden(service: SchedulingService, doctor) -> None:
    appointment = service.book_slot(doctor.id, PATIENT.id, MONDAY, '8:00 AM')

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(
            appointment.id,
            RescheduleAppointmentRequest(date=MONDAY, time='10:00 AM'),
            requester=Requester(id=11, role=Role.PATIENT),
            service=service,
        )

    assert exception_info.value.status_code == 403


def test_http_booking_flow(client: TestClient, doctor) -> None:
    headers = _auth(10, Role.PATIENT)

    created = client.post(
        '/appointments',
        json={'doctor_id': doctor.id, 'date': '2026-01-05', 'time': '8:00 AM'},
        headers=headers,
    )
    assert created.status_code == 201
    appointment_id = created.json()['id']

    moved = client.post(
        f'/appointments/{appointment_id}/reschedule',
        json={'date': '2026-01-05', 'time': '10:00'},
        headers=headers,
    )
    assert moved.status_code == 200
    assert moved.json()['time'] == '10:00 AM'

    cancelled = client.post(f'/appointments/{appointment_id}/cancel', headers=headers)
    assert cancelled.status_code == 204

    listed = client.get('/appointments', params={'status': 'cancelled'}, headers=headers)
    assert [item['id'] for item in listed.json()] == [appointment_id]


def test_http_requests_need_a_valid_token(client: TestClient, doctor) -> None:
    payload = {'doctor_id': doctor.id, 'date': '2026-01-05', 'time': '8:00 AM'}

    missing = client.post('/appointments', json=payload)
    invalid = client.post('/appointments', json=payload, headers={'Authorization': 'Bearer not-a-token'})

    assert missing.status_code in (401, 403)
    assert invalid.status_code == 401
