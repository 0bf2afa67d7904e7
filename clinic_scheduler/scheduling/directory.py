from collections.abc import Callable

from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinic_scheduler.core.errors import DoctorNotFound
from clinic_scheduler.models.doctor import Doctor


class DoctorProfile(BaseModel):
    id: int
    name: str
    available: bool
    fee_amount: int

    class Config:
        from_attributes = True


class DoctorDirectory:
    """Read-only view of doctor accounts owned by another part of the system."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get_doctor(self, doctor_id: int) -> DoctorProfile:
        with self._session_factory() as db:
            doctor = db.get(Doctor, doctor_id)
            if doctor is None:
                raise DoctorNotFound()
            return DoctorProfile.model_validate(doctor)
