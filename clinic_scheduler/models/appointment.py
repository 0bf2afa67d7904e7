"""Appointment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String
from clinic_scheduler.core.timeslots import format_time
from clinic_scheduler.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Appointment(Base):
    """Represents a booked appointment.

    ``version`` is the optimistic-concurrency counter: every ORM update is
    issued as ``UPDATE ... WHERE id = ? AND version = ?`` and bumps it.
    """
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, nullable=False)
    appointment_date = Column(Date, nullable=False)
    slot_minute = Column(Integer, nullable=False)
    fee_amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default='active')
    payment_confirmed = Column(Boolean, nullable=False, default=False)
    cancelled_by = Column(String)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        Index('idx_appointments_doctor_date', 'doctor_id', 'appointment_date', 'status'),
        Index('idx_appointments_patient', 'patient_id', 'appointment_date'),
    )
    __mapper_args__ = {'version_id_col': version}

    @property
    def time(self) -> str:
        return format_time(self.slot_minute)
