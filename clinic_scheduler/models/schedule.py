"""Doctor schedule model definitions."""

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Index, Integer, String, func
from clinic_scheduler.database import Base


class DoctorSchedule(Base):
    """Weekly template, slot granularity and daily capacity for one doctor."""
    __tablename__ = "doctor_schedules"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), unique=True, nullable=False)
    weekly_template = Column(JSON, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    max_patients_per_day = Column(Integer, nullable=False, default=20)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class BlockedTime(Base):
    """Ad-hoc unavailable interval (vacation, meeting) on one calendar date."""
    __tablename__ = "blocked_intervals"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    reason = Column(String, nullable=False, default='')

    __table_args__ = (
        Index('idx_blocked_intervals_doctor_date', 'doctor_id', 'date'),
    )
