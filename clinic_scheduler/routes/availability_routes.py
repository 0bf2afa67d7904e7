from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.auth.dependencies import Requester, get_current_requester
from clinic_scheduler.core.errors import SchedulingError, to_http_exception
from clinic_scheduler.core.roles import Role
from clinic_scheduler.core.services import get_schedule_manager, get_scheduling_service
from clinic_scheduler.core.timeslots import format_24h
from clinic_scheduler.database import ensure_appointment_schema, ensure_ledger_schema
from clinic_scheduler.scheduling.availability import BlockedInterval, DaySchedule, DoctorAvailability
from clinic_scheduler.scheduling.schedules import ScheduleManager
from clinic_scheduler.scheduling.service import SchedulingService

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'
MAX_BLOCKED_REASON_LENGTH = 200


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_ledger_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


router = APIRouter(tags=['availability'], dependencies=[Depends(ensure_database_ready)])


class SlotListResponse(BaseModel):
    morning: list[str]
    afternoon: list[str]
    evening: list[str]
    all: list[str]


class PeriodResponse(BaseModel):
    is_available: bool
    start_time: str
    end_time: str


class DayScheduleResponse(BaseModel):
    is_available: bool
    morning: PeriodResponse
    afternoon: PeriodResponse
    evening: PeriodResponse


class BlockedTimeResponse(BaseModel):
    id: int
    date: date
    start_time: str
    end_time: str
    reason: str


class ScheduleResponse(BaseModel):
    doctor_id: int
    weekly_template: dict[str, DayScheduleResponse]
    slot_duration_minutes: int
    max_patients_per_day: int
    blocked_times: list[BlockedTimeResponse]


class ReconcileResponse(BaseModel):
    doctor_id: int
    date: date
    released: int


class WeeklyScheduleRequest(BaseModel):
    weekly_template: dict[str, DaySchedule]


class SlotDurationRequest(BaseModel):
    slot_duration_minutes: int


class MaxPatientsRequest(BaseModel):
    max_patients_per_day: int


class CreateBlockedTimeRequest(BaseModel):
    date: date
    start_time: str
    end_time: str
    reason: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Start and end times are required.')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if len(normalized) > MAX_BLOCKED_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_BLOCKED_REASON_LENGTH} characters or fewer.')

        return normalized or None


def ensure_can_edit_schedule(requester: Requester, doctor_id: int) -> None:
    if requester.role == Role.ADMIN:
        return
    if requester.role == Role.DOCTOR and requester.id == doctor_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only the doctor or an admin can change this schedule.',
    )


def blocked_time_response(interval: BlockedInterval) -> BlockedTimeResponse:
    return BlockedTimeResponse(
        id=interval.id,
        date=interval.date,
        start_time=format_24h(interval.start),
        end_time=format_24h(interval.end),
        reason=interval.reason,
    )


def schedule_response(availability: DoctorAvailability) -> ScheduleResponse:
    return ScheduleResponse(
        doctor_id=availability.doctor_id,
        weekly_template={
            day: DayScheduleResponse(
                is_available=schedule.is_available,
                **{
                    name: PeriodResponse(
                        is_available=period.is_available,
                        start_time=format_24h(period.start),
                        end_time=format_24h(period.end),
                    )
                    for name, period in schedule.periods()
                },
            )
            for day, schedule in availability.weekly_template.items()
        },
        slot_duration_minutes=availability.slot_duration_minutes,
        max_patients_per_day=availability.max_patients_per_day,
        blocked_times=[blocked_time_response(interval) for interval in availability.blocked_intervals],
    )


def _database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE)


@router.get('/doctors/{doctor_id}/slots', response_model=SlotListResponse)
def list_available_slots(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return SlotListResponse(**service.list_available_slots(doctor_id, slot_date).formatted())
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.get('/doctors/{doctor_id}/schedule', response_model=ScheduleResponse)
def get_schedule(doctor_id: int, manager: ScheduleManager = Depends(get_schedule_manager)):
    try:
        return schedule_response(manager.get_schedule(doctor_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.put('/doctors/{doctor_id}/schedule/weekly', response_model=ScheduleResponse)
def update_weekly_schedule(
    doctor_id: int,
    data: WeeklyScheduleRequest,
    requester: Requester = Depends(get_current_requester),
    manager: ScheduleManager = Depends(get_schedule_manager),
):
    ensure_can_edit_schedule(requester, doctor_id)

    try:
        return schedule_response(manager.set_weekly_template(doctor_id, data.weekly_template))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.put('/doctors/{doctor_id}/schedule/days/{day}', response_model=ScheduleResponse)
def update_day_schedule(
    doctor_id: int,
    day: str,
    data: DaySchedule,
    requester: Requester = Depends(get_current_requester),
    manager: ScheduleManager = Depends(get_schedule_manager),
):
    ensure_can_edit_schedule(requester, doctor_id)

    try:
        return schedule_response(manager.set_day_schedule(doctor_id, day, data))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.put('/doctors/{doctor_id}/schedule/slot-duration', response_model=ScheduleResponse)
def update_slot_duration(
    doctor_id: int,
    data: SlotDurationRequest,
    requester: Requester = Depends(get_current_requester),
    manager: ScheduleManager = Depends(get_schedule_manager),
):
    ensure_can_edit_schedule(requester, doctor_id)

    try:
        return schedule_response(manager.set_slot_duration(doctor_id, data.slot_duration_minutes))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.put('/doctors/{doctor_id}/schedule/max-patients', response_model=ScheduleResponse)
def update_max_patients(
    doctor_id: int,
    data: MaxPatientsRequest,
    requester: Requester = Depends(get_current_requester),
    manager: ScheduleManager = Depends(get_schedule_manager),
):
    ensure_can_edit_schedule(requester, doctor_id)

    try:
        return schedule_response(manager.set_max_patients_per_day(doctor_id, data.max_patients_per_day))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.get('/doctors/{doctor_id}/blocked-times', response_model=list[BlockedTimeResponse])
def list_blocked_times(
    doctor_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    manager: ScheduleManager = Depends(get_schedule_manager),
):
    try:
        return [
            blocked_time_response(interval)
            for interval in manager.list_blocked_intervals(doctor_id, start_date, end_date)
        ]
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.post(
    '/doctors/{doctor_id}/blocked-times',
    response_model=BlockedTimeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_blocked_time(
    doctor_id: int,
    data: CreateBlockedTimeRequest,
    requester: Requester = Depends(get_current_requester),
    manager: ScheduleManager = Depends(get_schedule_manager),
):
    ensure_can_edit_schedule(requester, doctor_id)

    try:
        blocked = manager.add_blocked_interval(
            doctor_id,
            {'date': data.date, 'start': data.start_time, 'end': data.end_time, 'reason': data.reason},
        )
        return blocked_time_response(blocked)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.delete('/doctors/{doctor_id}/blocked-times/{interval_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_blocked_time(
    doctor_id: int,
    interval_id: int,
    requester: Requester = Depends(get_current_requester),
    manager: ScheduleManager = Depends(get_schedule_manager),
):
    ensure_can_edit_schedule(requester, doctor_id)

    try:
        manager.remove_blocked_interval(doctor_id, interval_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.post('/doctors/{doctor_id}/ledger/reconcile', response_model=ReconcileResponse)
def reconcile_ledger(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    requester: Requester = Depends(get_current_requester),
    service: SchedulingService = Depends(get_scheduling_service),
):
    if requester.role != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only admins can reconcile the booking ledger.')

    try:
        released = service.reconcile_ledger(doctor_id, slot_date)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc

    return ReconcileResponse(doctor_id=doctor_id, date=slot_date, released=released)
