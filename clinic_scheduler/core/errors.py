"""Error taxonomy shared by the scheduling core and the HTTP layer.

Every error carries the status code the API layer answers with, so routers
can translate any ``SchedulingError`` without knowing the concrete type.
"""

from fastapi import HTTPException, status


class SchedulingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = 'Scheduling request failed.'

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class InvalidRequest(SchedulingError):
    detail = 'Invalid scheduling request.'


class InvalidScheduleConfig(InvalidRequest):
    detail = 'Invalid schedule configuration.'


class OverlappingBlock(InvalidScheduleConfig):
    detail = 'Blocked time overlaps an existing blocked time on the same date.'


class InvalidSlotTime(InvalidRequest):
    detail = 'Invalid time. Use "H:MM AM/PM" or "HH:MM".'


class ConflictError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    detail = 'Request conflicts with the current schedule.'


class SlotUnavailable(ConflictError):
    detail = 'Slot not available. Please choose a different time.'


class DailyCapacityExceeded(ConflictError):
    detail = 'The doctor is fully booked on this date. Please choose a different day.'


class DoctorUnavailable(ConflictError):
    detail = 'Doctor not available.'


class AppointmentNotActive(ConflictError):
    detail = 'Appointment is no longer active.'


class StaleAppointment(ConflictError):
    detail = 'Appointment was changed by another request. Reload it and try again.'


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = 'Not found.'


class AppointmentNotFound(NotFoundError):
    detail = 'Appointment not found.'


class DoctorNotFound(NotFoundError):
    detail = 'Doctor not found.'


class AuthorizationError(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = 'Not allowed.'


class Unauthorized(AuthorizationError):
    detail = 'Unauthorized action.'


class TransientError(SchedulingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = 'Temporary storage failure. Please retry.'


class RequestTimeout(TransientError):
    detail = 'The request timed out before the appointment was saved. Please retry.'


class LedgerUnavailable(TransientError):
    detail = 'Booking ledger unavailable. Please retry.'


def to_http_exception(exc: SchedulingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)
