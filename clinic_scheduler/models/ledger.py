"""Booking ledger model definitions."""

from sqlalchemy import Column, Date, DateTime, Index, Integer, UniqueConstraint, func
from clinic_scheduler.database import Base


class BookedSlot(Base):
    """One committed slot-time for a doctor on a date.

    The unique constraint is what makes a reservation atomic: a second
    insert for the same triple fails inside the database.
    """
    __tablename__ = "booked_slots"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, nullable=False)
    slot_date = Column(Date, nullable=False)
    slot_minute = Column(Integer, nullable=False)
    reserved_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint('doctor_id', 'slot_date', 'slot_minute', name='uq_booked_slot'),
        Index('idx_booked_slots_doctor_date', 'doctor_id', 'slot_date'),
    )
